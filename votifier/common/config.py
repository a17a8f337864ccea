import json, logging, os
from dataclasses import dataclass, asdict, replace
from threading import RLock
from typing import Optional

from votifier.common.crypto import KeyPair, rsa_generate, save_keypair, load_keypair
from votifier.common.errors import InvalidConfig, IOFailure
from votifier.common.log import is_level

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8192
DEFAULT_TIMEOUT = 5.0
DEFAULT_KEY_SIZE = 2048


@dataclass(frozen=True)
class Config:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT   # seconds a single connection may stay open
    public_key_file: str = "public.pem"
    private_key_file: str = "private.pem"
    expose_payloads: bool = False   # attach raw/decrypted bytes to exception events
    log_level: str = "INFO"
    key_pair: Optional[KeyPair] = None

    @property
    def address(self):
        return (self.host, self.port)

    def with_key_pair(self, pair: KeyPair) -> "Config":
        return replace(self, key_pair=pair)


class Current:
    '''
    Holder for the configuration in use. Readers take one snapshot per use with get();
    a restart replaces the whole Config with set()/swap(). `lock` is reentrant so a caller
    can hold it across several calls (restart does, and so does the tester).
    '''

    def __init__(self, value: Optional[Config] = None):
        self.lock = RLock()
        self._value = value

    def get(self) -> Optional[Config]:
        with self.lock:
            return self._value

    def set(self, value: Config) -> None:
        with self.lock:
            self._value = value

    def swap(self, value: Config) -> Optional[Config]:
        ''' This function installs a new value and returns the previous one '''
        with self.lock:
            old, self._value = self._value, value
            return old


_FIELDS = {
    "host": str,
    "port": int,
    "timeout": (int, float),
    "public_key_file": str,
    "private_key_file": str,
    "expose_payloads": bool,
    "log_level": str,
}


def config_to_dict(config: Config) -> dict:
    d = asdict(config)
    d.pop("key_pair")
    return d


def save_config(config: Config, path) -> None:
    ''' This function writes the JSON form of a Config (key material is stored in its own files) '''
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=4)
            f.write("\n")
    except OSError as e:
        raise IOFailure(f"could not write {path}: {e}") from e


def load_config(path, key_size: int = DEFAULT_KEY_SIZE) -> Config:
    '''
    This function loads the configuration file and the key pair it points to.
    A missing config file is created with defaults. Key paths are relative to the config
    file's directory. If neither key file exists a new pair is generated and saved.
    Input:
        - path: JSON config file
        - key_size: size of the pair generated on first run
    Output: Config with key_pair set
    '''
    base = os.path.dirname(os.path.abspath(path))
    if not os.path.exists(path):
        logger.info("Config file %s not found, writing defaults", path)
        save_config(Config(), path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidConfig(f"{path}: {e}") from e
    except OSError as e:
        raise IOFailure(f"could not read {path}: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidConfig(f"{path}: top level must be an object")

    values = {}
    for name, kind in _FIELDS.items():
        if name not in raw:
            continue
        value = raw[name]
        # bool is an int subclass, don't let true/false pass as a port or timeout
        if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
            raise InvalidConfig(f"{path}: '{name}' has the wrong type")
        values[name] = value
    config = Config(**values)
    if not 0 <= config.port <= 65535:
        raise InvalidConfig(f"{path}: port {config.port} out of range")
    if config.timeout <= 0:
        raise InvalidConfig(f"{path}: timeout must be positive")
    if not is_level(config.log_level):
        raise InvalidConfig(f"{path}: unknown log_level {config.log_level!r}")

    pub_path = os.path.join(base, config.public_key_file)
    priv_path = os.path.join(base, config.private_key_file)
    if not os.path.exists(pub_path) and not os.path.exists(priv_path):
        logger.info("No key pair found, generating a %d-bit pair", key_size)
        pair = rsa_generate(key_size)
        save_keypair(pair, pub_path, priv_path)
    else:
        pair = load_keypair(pub_path, priv_path)
    return replace(config, public_key_file=pub_path, private_key_file=priv_path, key_pair=pair)
