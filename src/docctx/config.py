"""Configuration management for docctx."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from docctx.exceptions import ConfigError
from docctx.relevance import DocumentProfile
from docctx.token_counter import DEFAULT_CHARS_PER_TOKEN, TRUNCATION_MARKER

CONFIG_DIR = ".docctx"
CONFIG_FILE = "config.yaml"


@dataclass
class ProjectConfig:
    name: str = ""
    description: str = ""


@dataclass
class ModelConfig:
    provider: str = "openai"
    model: str = "gpt-4o"
    # Optional explicit capacity for models the registry does not know
    max_context_tokens: Optional[int] = None
    reserved_output_tokens: Optional[int] = None


@dataclass
class AssemblyConfig:
    standard_max_tokens: int = 50_000
    ultra_min_tokens: int = 200_000
    supplementary_floor_tokens: int = 5_000
    supplementary_max_fragments: int = 3
    overflow_tolerance: float = 0.20
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN
    tokenizer: str = "chars"
    truncation_marker: str = TRUNCATION_MARKER
    cache_max_entries: int = 128

    def validate(self) -> None:
        """Raise ConfigError on thresholds that cannot work together."""
        if self.standard_max_tokens <= 0:
            raise ConfigError("assembly.standard_max_tokens must be positive")
        if self.ultra_min_tokens < self.standard_max_tokens:
            raise ConfigError(
                "assembly.ultra_min_tokens must be >= assembly.standard_max_tokens"
            )
        if self.supplementary_floor_tokens < 0:
            raise ConfigError("assembly.supplementary_floor_tokens must not be negative")
        if self.supplementary_max_fragments < 0:
            raise ConfigError("assembly.supplementary_max_fragments must not be negative")
        if not 0 <= self.overflow_tolerance <= 1:
            raise ConfigError("assembly.overflow_tolerance must be between 0 and 1")
        if self.chars_per_token <= 0:
            raise ConfigError("assembly.chars_per_token must be positive")
        if self.tokenizer not in ("chars", "tiktoken"):
            raise ConfigError(f"assembly.tokenizer must be 'chars' or 'tiktoken', got {self.tokenizer!r}")


@dataclass
class DiscoveryConfig:
    extensions: List[str] = field(default_factory=lambda: [
        ".md", ".markdown", ".txt", ".rst"
    ])
    exclude: List[str] = field(default_factory=lambda: [
        "node_modules/",
        "dist/",
        "build/",
        "coverage/",
        ".nyc_output/",
        "logs/",
        "tmp/",
        "temp/",
        "__pycache__/",
        "venv/",
        "generated-documents/",
    ])
    max_depth: int = 3
    max_file_bytes: int = 1_048_576
    min_chars: int = 50
    min_score: int = 75
    max_count: int = 10
    timeout_seconds: Optional[float] = None
    workers: int = 4


@dataclass
class Config:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    core_file: str = "README.md"
    # document type -> {keywords: {term: weight}, dependencies: [keys]}
    documents: Dict[str, dict] = field(default_factory=dict)
    # enriched key -> file path (relative to root)
    enriched: Dict[str, str] = field(default_factory=dict)
    root: Path = field(default_factory=lambda: Path(".").resolve())

    @classmethod
    def create_default(cls, root: Path) -> "Config":
        """Create default configuration for a project."""
        config = cls()
        config.root = root.resolve()
        config.project.name = config.root.name
        return config

    def document_profiles(self) -> Dict[str, DocumentProfile]:
        """Per-document overrides from the ``documents`` section."""
        profiles = {}
        for doc_type, data in self.documents.items():
            if not isinstance(data, dict):
                raise ConfigError(f"documents.{doc_type} must be a mapping")
            profiles[doc_type] = DocumentProfile.from_dict(data)
        return profiles

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        config_dict = {
            "project": asdict(self.project),
            "model": asdict(self.model),
            "assembly": asdict(self.assembly),
            "discovery": asdict(self.discovery),
            "core_file": self.core_file,
            "documents": self.documents,
            "enriched": self.enriched,
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")

        config = cls()
        config.root = path.parent.parent.resolve()

        try:
            if "project" in data:
                config.project = ProjectConfig(**data["project"])
            if "model" in data:
                config.model = ModelConfig(**data["model"])
            if "assembly" in data:
                config.assembly = AssemblyConfig(**data["assembly"])
            if "discovery" in data:
                config.discovery = DiscoveryConfig(**data["discovery"])
        except TypeError as e:
            raise ConfigError(f"{path}: {e}") from e

        if "core_file" in data:
            config.core_file = data["core_file"]
        if "documents" in data:
            config.documents = data["documents"] or {}
        if "enriched" in data:
            config.enriched = data["enriched"] or {}

        config.assembly.validate()
        return config


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from path or auto-detect."""
    if path:
        return Config.load(path)

    current = Path(".").resolve()
    for _ in range(10):  # Max 10 levels up
        config_path = current / CONFIG_DIR / CONFIG_FILE
        if config_path.exists():
            return Config.load(config_path)

        parent = current.parent
        if parent == current:
            break
        current = parent

    return Config.create_default(Path(".").resolve())
