"""Configuration loading for chatter-quote."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomli

logger = logging.getLogger("chatter_quote.config")

MARK_USED_ON_SCHEDULE = "on_schedule"
MARK_USED_ON_DELIVERY = "on_delivery"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep


@dataclass
class NextcloudConfig:
    url: str = ""
    username: str = ""
    app_password: str = ""


@dataclass
class TalkConfig:
    enabled: bool = True
    conversation_token: str = ""  # 1:1 room with the recipient


@dataclass
class EngineConfig:
    sync_interval: int = 15  # seconds between schedule reconciliations
    # Delay before a selected quote is actually sent:
    # send_delay_min + randint(0, send_delay_max) seconds
    send_delay_min: int = 0
    send_delay_max: int = 600
    tick_interval: float = 1.0  # dispatcher wake-up granularity
    max_workers: int = 4  # job worker threads
    timezone: str = ""  # cron evaluation timezone; empty = system local
    mark_used: str = MARK_USED_ON_SCHEDULE  # or "on_delivery"


@dataclass
class TrackingConfig:
    """Where each schedule remembers which quotes it has already sent."""
    backend: str = "file"  # "file" or "db"
    dir: Path = field(default_factory=lambda: Path("/tmp"))
    file_prefix: str = "sent-quotes-"


@dataclass
class DeliveryConfig:
    # Every sent quote is appended here with a timestamp; empty to disable
    sent_log: str = str(Path.home() / "chatter-quote" / "quotes.log")


@dataclass
class BootstrapConfig:
    """Optional one-time seeding performed when the daemon starts."""
    quotes_file: str = str(Path.home() / "quotes.txt")
    tag: str = "initial-group"
    schedule_name: str = "initial-group-schedule"
    schedule_cron: str = "0 0 08-21/3 * * ?"


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path("data/chatter-quote.db"))
    lock_path: Path = field(default_factory=lambda: Path("/tmp/chatter-quote-daemon.lock"))
    nextcloud: NextcloudConfig = field(default_factory=NextcloudConfig)
    talk: TalkConfig = field(default_factory=TalkConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def mark_used_on_delivery(self) -> bool:
        return self.engine.mark_used == MARK_USED_ON_DELIVERY


def _parse_engine(data: dict) -> EngineConfig:
    engine = EngineConfig(
        sync_interval=data.get("sync_interval", 15),
        send_delay_min=data.get("send_delay_min", 0),
        send_delay_max=data.get("send_delay_max", 600),
        tick_interval=data.get("tick_interval", 1.0),
        max_workers=data.get("max_workers", 4),
        timezone=data.get("timezone", ""),
        mark_used=data.get("mark_used", MARK_USED_ON_SCHEDULE),
    )
    if engine.mark_used not in (MARK_USED_ON_SCHEDULE, MARK_USED_ON_DELIVERY):
        logger.warning(
            "Unknown engine.mark_used %r, falling back to %s",
            engine.mark_used, MARK_USED_ON_SCHEDULE,
        )
        engine.mark_used = MARK_USED_ON_SCHEDULE
    if engine.sync_interval < 1:
        logger.warning("engine.sync_interval must be >= 1, using 1")
        engine.sync_interval = 1
    if engine.send_delay_min < 0 or engine.send_delay_max < 0:
        logger.warning("Negative send delay in config, clamping to 0")
        engine.send_delay_min = max(engine.send_delay_min, 0)
        engine.send_delay_max = max(engine.send_delay_max, 0)
    return engine


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file."""
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("config/config.toml"),
            Path.home() / ".config/chatter-quote/config.toml",
            Path("/etc/chatter-quote/config.toml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None or not config_path.exists():
        config = Config()
        _apply_env_overrides(config)
        return config

    with open(config_path, "rb") as f:
        data = tomli.load(f)

    config = Config()

    if "db_path" in data:
        config.db_path = Path(data["db_path"])

    if "lock_path" in data:
        config.lock_path = Path(data["lock_path"])

    if "nextcloud" in data:
        nc = data["nextcloud"]
        config.nextcloud = NextcloudConfig(
            url=nc.get("url", ""),
            username=nc.get("username", ""),
            app_password=nc.get("app_password", ""),
        )

    if "talk" in data:
        talk = data["talk"]
        config.talk = TalkConfig(
            enabled=talk.get("enabled", True),
            conversation_token=talk.get("conversation_token", ""),
        )

    if "engine" in data:
        config.engine = _parse_engine(data["engine"])

    if "tracking" in data:
        tr = data["tracking"]
        config.tracking = TrackingConfig(
            backend=tr.get("backend", "file"),
            dir=Path(tr.get("dir", "/tmp")),
            file_prefix=tr.get("file_prefix", "sent-quotes-"),
        )

    if "delivery" in data:
        d = data["delivery"]
        config.delivery = DeliveryConfig(
            sent_log=d.get("sent_log", DeliveryConfig().sent_log),
        )

    if "bootstrap" in data:
        b = data["bootstrap"]
        defaults = BootstrapConfig()
        config.bootstrap = BootstrapConfig(
            quotes_file=b.get("quotes_file", defaults.quotes_file),
            tag=b.get("tag", defaults.tag),
            schedule_name=b.get("schedule_name", defaults.schedule_name),
            schedule_cron=b.get("schedule_cron", defaults.schedule_cron),
        )

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
        )

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Config) -> None:
    # Environment variable overrides for secrets (allows EnvironmentFile= usage)
    _env_secret_overrides = [
        ("CHATTER_QUOTE_NC_APP_PASSWORD", "nextcloud", "app_password"),
        ("CHATTER_QUOTE_TALK_TOKEN", "talk", "conversation_token"),
    ]
    for env_var, section, field_name in _env_secret_overrides:
        val = os.environ.get(env_var)
        if val:
            setattr(getattr(config, section), field_name, val)
