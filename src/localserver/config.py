"""
LocalServer YAML Configuration

Declarative provider sets for the local server.

Example file:

    server:
      block_unmatched: true
      log_level: info

    providers:
      - rule: "https://.*/persons/.*"
        json: {name: Jhon, age: 31}

      - rule: "https://.*/baseball"
        status: 404
        timing: {header_delay: 3}

      - rule: "https://.*/horse"
        header_error: {type: connect, message: "Not connected to the internet"}

      - rule: "https://.*/avatar.png"
        file: fixtures/avatar.png
        headers: {Content-Type: image/png}

Relative ``file`` paths are resolved against the directory of the YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import yaml

from .errors import ConfigError, SimulatedNetworkError
from .providers.base import Timing
from .providers.basic import BasicResponseProvider, Header
from .server import LocalServer, LocalServerConfig

# Error types available to header_error / body_error
ERROR_TYPES = {
    'connect': httpx.ConnectError,
    'timeout': httpx.ReadTimeout,
    'network': httpx.NetworkError,
    'protocol': httpx.RemoteProtocolError,
    'simulated': SimulatedNetworkError,
}

_BODY_KEYS = ('body', 'json', 'file')
_PROVIDER_KEYS = {'rule', 'status', 'headers', 'timing', 'header_error', 'body_error', *_BODY_KEYS}


def build_error(definition: Any) -> Exception:
    """
    Build the exception described by ``definition``.

    ``definition`` is either a message string (SimulatedNetworkError) or a mapping
    with ``type`` (see ERROR_TYPES) and ``message``.
    """
    if isinstance(definition, str):
        return SimulatedNetworkError(definition)
    if not isinstance(definition, dict):
        raise ConfigError(f"Error definition must be a string or mapping, got {definition!r}")

    error_type = definition.get('type', 'simulated')
    if error_type not in ERROR_TYPES:
        raise ConfigError(f"Unknown error type {error_type!r}, expected one of {', '.join(ERROR_TYPES)}")
    return ERROR_TYPES[error_type](str(definition.get('message', 'Simulated failure')))


@dataclass
class ProviderDefinition:
    """One entry of the ``providers`` list."""

    rule: str
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    json: Any = None
    file: Optional[str] = None
    header_error: Any = None
    body_error: Any = None
    timing: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProviderDefinition':
        """Create definition from dictionary, validating keys."""
        if not isinstance(data, dict):
            raise ConfigError(f"Provider definition must be a mapping, got {data!r}")
        unknown = set(data) - _PROVIDER_KEYS
        if unknown:
            raise ConfigError(f"Unknown provider keys: {', '.join(sorted(unknown))}")
        if 'rule' not in data:
            raise ConfigError(f"Provider definition without rule: {data!r}")
        bodies = [key for key in _BODY_KEYS if key in data]
        if len(bodies) > 1:
            raise ConfigError(f"Provider {data['rule']!r} defines more than one of {', '.join(bodies)}")

        status = data.get('status', 200)
        if isinstance(status, bool) or not isinstance(status, int) or not 100 <= status <= 599:
            raise ConfigError(f"Provider {data['rule']!r} has invalid status {status!r}, expected 100-599")
        body = data.get('body')
        if body is not None and not isinstance(body, (str, bytes)):
            raise ConfigError(f"Provider {data['rule']!r} body must be text, got {type(body).__name__}")
        if not isinstance(data.get('headers') or {}, dict):
            raise ConfigError(f"Provider {data['rule']!r} headers must be a mapping")
        if not isinstance(data.get('timing') or {}, dict):
            raise ConfigError(f"Provider {data['rule']!r} timing must be a mapping")

        return cls(
            rule=data['rule'],
            status=status,
            headers={str(k): str(v) for k, v in (data.get('headers') or {}).items()},
            body=body,
            json=data.get('json'),
            file=data.get('file'),
            header_error=data.get('header_error'),
            body_error=data.get('body_error'),
            timing=data.get('timing') or {}
        )

    def to_provider(self, base_dir: Optional[Path] = None) -> BasicResponseProvider:
        """
        Build the provider.

        Args:
            base_dir: Directory relative ``file`` paths are resolved against
        """
        unknown = set(self.timing) - {'header_delay', 'body_delay'}
        if unknown:
            raise ConfigError(f"Unknown timing keys: {', '.join(sorted(unknown))}")
        try:
            timing = Timing(**self.timing)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid timing for {self.rule!r}: {e}") from e

        header = Header(self.status, self.headers)
        if self.header_error is not None:
            return BasicResponseProvider(self.rule, header=build_error(self.header_error), timing=timing)

        if self.json is not None:
            if self.body_error is not None:
                raise ConfigError(f"Provider {self.rule!r} defines both json and body_error")
            return BasicResponseProvider.json(self.rule, self.json, header=header, timing=timing)

        if self.body_error is not None:
            body: Any = build_error(self.body_error)
        elif self.file is not None:
            path = Path(self.file)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            body = path
        else:
            body = self.body
        return BasicResponseProvider(self.rule, body=body, header=header, timing=timing)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    return data


def parse_config(data: Dict[str, Any], base_dir: Optional[Path] = None) -> Tuple[LocalServerConfig, List[BasicResponseProvider]]:
    """Build server config and providers from an already parsed document."""
    unknown = set(data) - {'server', 'providers'}
    if unknown:
        raise ConfigError(f"Unknown top level keys: {', '.join(sorted(unknown))}")

    config = LocalServerConfig.from_dict(data.get('server') or {})
    definitions = data.get('providers') or []
    if not isinstance(definitions, list):
        raise ConfigError("providers must be a list")
    providers = [ProviderDefinition.from_dict(d).to_provider(base_dir) for d in definitions]
    return config, providers


def load_providers(path: str) -> List[BasicResponseProvider]:
    """Load the providers defined in a YAML file, in file order."""
    yaml_path = Path(path)
    _, providers = parse_config(_read_yaml(yaml_path), yaml_path.parent)
    return providers


def load_server(path: str) -> LocalServer:
    """
    Create a LocalServer configured from a YAML file.

    Providers are added in file order, so later entries take precedence.
    The server is returned stopped.
    """
    yaml_path = Path(path)
    config, providers = parse_config(_read_yaml(yaml_path), yaml_path.parent)
    server = LocalServer(config=config)
    for provider in providers:
        server.add(provider)
    return server
