import os

from dotenv import find_dotenv, load_dotenv

from inbox_categorizer.logger import get_logger
from inbox_categorizer.ml.model import TrainingOptions

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "AUTO_APPROVE_THRESHOLD",
    "RECLASSIFY_CHUNK_SIZE",
    "TRAINING_PAGE_SIZE",
    "MODEL_STALE_HOURS",
    "TRAIN_LEARNING_RATE",
    "TRAIN_REGULARIZATION",
    "TRAIN_MAX_ITERATIONS",
    "TRAIN_CONVERGENCE_THRESHOLD",
    "TRAIN_RECENCY_WEIGHTING",
    "RULE_PATTERN_MAX_LENGTH",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    candidate = os.path.join(os.getcwd(), "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _clean_value(raw_value: str) -> str:
    value = raw_value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    # Unquoted values may carry a trailing "# comment".
    return value.split(" #", 1)[0].strip()


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; nesting and lists are not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _clean_value(raw_value)
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    # Real environment variables always win over the config file.
    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(
    name: str,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if (min_value is not None and value < min_value) or (max_value is not None and value > max_value):
        logger.warning("[ENV] %s='%s' out of range, using default %s.", name, raw, default)
        return default
    return value


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
    return default


def log_environment() -> None:
    logger.info("[ENV] Configuration (config file: %s)", get_config_path() or "<none>")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else raw_value.replace("\n", "\\n")
        logger.info("[ENV] %s=%s", key, value)


DEFAULT_AUTO_APPROVE_THRESHOLD = 0.85
DEFAULT_RECLASSIFY_CHUNK_SIZE = 100
DEFAULT_TRAINING_PAGE_SIZE = 500
DEFAULT_MODEL_STALE_HOURS = 24
DEFAULT_RULE_PATTERN_MAX_LENGTH = 512


load_environment()

LOG_DIR = os.getenv("LOG_DIR")
if LOG_DIR:
    os.makedirs(LOG_DIR, exist_ok=True)


def auto_approve_threshold() -> float:
    # Must stay above zero; fallback suggestions carry confidence 0.
    return get_env_float(
        "AUTO_APPROVE_THRESHOLD",
        DEFAULT_AUTO_APPROVE_THRESHOLD,
        min_value=1e-6,
        max_value=1.0,
    )


def reclassify_chunk_size() -> int:
    return get_env_int("RECLASSIFY_CHUNK_SIZE", DEFAULT_RECLASSIFY_CHUNK_SIZE, min_value=1)


def training_page_size() -> int:
    return get_env_int("TRAINING_PAGE_SIZE", DEFAULT_TRAINING_PAGE_SIZE, min_value=1)


def model_stale_hours() -> int:
    return get_env_int("MODEL_STALE_HOURS", DEFAULT_MODEL_STALE_HOURS, min_value=1)


def rule_pattern_max_length() -> int:
    return get_env_int("RULE_PATTERN_MAX_LENGTH", DEFAULT_RULE_PATTERN_MAX_LENGTH, min_value=1)


def training_options() -> TrainingOptions:
    defaults = TrainingOptions()
    return TrainingOptions(
        learning_rate=get_env_float("TRAIN_LEARNING_RATE", defaults.learning_rate, min_value=0.0),
        regularization=get_env_float("TRAIN_REGULARIZATION", defaults.regularization, min_value=0.0),
        max_iterations=get_env_int("TRAIN_MAX_ITERATIONS", defaults.max_iterations, min_value=1),
        convergence_threshold=get_env_float(
            "TRAIN_CONVERGENCE_THRESHOLD", defaults.convergence_threshold, min_value=0.0
        ),
        use_sample_weights=get_env_bool("TRAIN_RECENCY_WEIGHTING", defaults.use_sample_weights),
    )
