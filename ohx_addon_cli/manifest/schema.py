"""Pydantic models for the addon description file and registry entries.

An addon description file is a compose-style YAML document with a
``services`` map plus two namespaced keys: ``x-ohx-registry`` for the
registry metadata and ``x-runtime`` for the runtime requirements.
The same metadata block, extended with owner and timestamps, forms the
entries of the registry catalog snapshot.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from ohx_addon_cli.types import AddonStatusCode


class AddonStatus(BaseModel):
    """Registry status of an addon.

    Attributes:
        code: Lifecycle status code.
        description: Optional explanation (e.g. the replacement addon).
        descriptions: Optional translated explanations keyed by language.
    """

    code: AddonStatusCode = AddonStatusCode.AVAILABLE
    description: str | None = None
    descriptions: dict[str, str] | None = None


class RegistryMetadata(BaseModel):
    """Descriptive and identifying addon metadata (``x-ohx-registry``)."""

    model_config = ConfigDict(populate_by_name=True)

    # Descriptive
    title: str = Field(min_length=1)
    titles: dict[str, str] | None = None
    description: str
    descriptions: dict[str, str] | None = None
    authors: list[str] = Field(default_factory=list)
    manufacturers: list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    homepage: str | None = None
    license: str
    github: str | None = None
    changelog_url: str | None = None
    type_field: str = Field(alias="type")

    # Identification
    id: str = Field(min_length=1)
    version: str = Field(min_length=1)
    status: AddonStatus = Field(default_factory=AddonStatus)


class RuntimeRequirements(BaseModel):
    """Memory requirements of the addon (``x-runtime``)."""

    memory_min: int = Field(ge=0)
    memory_max: int = Field(ge=0)


class Permissions(BaseModel):
    """Permissions requested by a service."""

    mandatory: list[str] = Field(default_factory=list)
    optional: list[str] = Field(default_factory=list)


class BuildContext(BaseModel):
    """Local build context of a service."""

    context: str


class Service(BaseModel):
    """A single service of an addon.

    Unknown compose keys are ignored. Either ``image`` refers to an
    already published image or ``build`` marks the service as built
    locally by this tool.
    """

    model_config = ConfigDict(extra="ignore")

    # Security
    ports: list[str] | None = None
    firewall_allow: list[str] | None = None
    cap_add: list[str] | None = None
    cap_drop: list[str] | None = None
    devices: list[str] | None = None
    pid: str | None = None
    ipc: str | None = None
    permissions: Permissions | None = None

    image: str | None = None
    build: BuildContext | None = None
    depends_on: list[str] | None = None
    volumes: list[str] | None = None

    @field_validator("build", mode="before")
    @classmethod
    def coerce_build_context(cls, v: Any) -> Any:
        """Accept the compose short form ``build: ./path``."""
        if isinstance(v, str):
            return {"context": v}
        return v

    @field_validator("ports", mode="before")
    @classmethod
    def coerce_ports(cls, v: Any) -> Any:
        """YAML turns unquoted single ports into integers."""
        if isinstance(v, list):
            return [str(p) if isinstance(p, int) else p for p in v]
        return v

    @property
    def is_local_build(self) -> bool:
        """Whether this service is built from a local context."""
        return self.build is not None


class AddonManifest(BaseModel):
    """A parsed addon description file."""

    model_config = ConfigDict(populate_by_name=True)

    services: dict[str, Service]
    registry: RegistryMetadata = Field(alias="x-ohx-registry")
    runtime: RuntimeRequirements = Field(alias="x-runtime")

    def to_document(self) -> dict[str, Any]:
        """Dump the manifest using the file's key names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AddonRegistryEntry(RegistryMetadata):
    """An addon as listed in the registry catalog snapshot."""

    owner: str
    last_updated: int


class AddonStats(BaseModel):
    """Usage statistics of a registry addon.

    Attributes:
        v: Number of voters.
        p: Sum of rating points.
        d: Downloads.
        s: Stars.
        iss: Open issues.
        t: Last time the statistics were refreshed (epoch seconds).
    """

    v: int = 0
    p: int = 0
    d: int = 0
    s: int = 0
    iss: int = 0
    t: int = 0

    @property
    def rating(self) -> float:
        """Average rating, 0 if nobody voted."""
        return self.p / self.v if self.v else 0.0


class PermissionEntry(BaseModel):
    """A known permission that services may request."""

    id: str
    label: str
    description: str = ""
    standalone: bool = False


AddonEntryMap = dict[str, AddonRegistryEntry]
AddonStatsMap = dict[str, AddonStats]

addon_entry_map_adapter: TypeAdapter[AddonEntryMap] = TypeAdapter(AddonEntryMap)
addon_stats_map_adapter: TypeAdapter[AddonStatsMap] = TypeAdapter(AddonStatsMap)


__all__ = [
    "AddonEntryMap",
    "AddonManifest",
    "AddonRegistryEntry",
    "AddonStats",
    "AddonStatsMap",
    "AddonStatus",
    "BuildContext",
    "PermissionEntry",
    "Permissions",
    "RegistryMetadata",
    "RuntimeRequirements",
    "Service",
    "addon_entry_map_adapter",
    "addon_stats_map_adapter",
]
