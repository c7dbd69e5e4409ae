#!/usr/bin/env python3
"""
Configuration Manager for Event Listing Automation
Description:
Handles configuration loading from JSON files and environment variables,
validation, default values, and per-target credentials and budgets.
"""

import os
import json
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_TARGETS_FILE = str(Path(__file__).resolve().parent / "config" / "targets.json")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-http2",
    "--disable-features=VizDisplayCompositor",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
]

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


@dataclass
class AutomationModeConfig:
    """Browser launch and page identity settings"""
    headless: bool = True
    slow_motion: int = 0  # milliseconds
    launch_timeout: int = 60000  # milliseconds
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "fr-FR,fr;q=0.9,en;q=0.8"
    viewport_width: int = 1280
    viewport_height: int = 800
    browser_args: List[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))


@dataclass
class AutomationConfig:
    """Step execution, timing and logging settings"""
    max_retries: int = 2
    retry_base_delay: int = 500  # milliseconds
    element_wait_timeout: int = 10000
    navigation_timeout: int = 20000
    poll_interval: int = 250
    typing_delay_min: int = 50
    typing_delay_max: int = 150
    log_level: str = "INFO"
    log_file: str = ""
    dry_run: bool = False
    enable_performance_monitoring: bool = True
    default_budget_ms: int = 45000
    execution_ceiling_ms: int = 60000
    response_headroom_ms: int = 2000
    cancel_on_timeout: bool = True
    targets_file: str = DEFAULT_TARGETS_FILE


@dataclass
class TargetCredentials:
    """Login for one target; never part of the event payload"""
    email: str = ""
    password: str = ""

    def is_complete(self) -> bool:
        return bool(self.email and self.password)

    def __repr__(self) -> str:
        masked = '*' * len(self.password) if self.password else 'NOT SET'
        return f"TargetCredentials(email={self.email or 'NOT SET'!r}, password={masked!r})"


@dataclass
class TargetSettings:
    """Per-target runtime overrides"""
    enabled: bool = True
    budget_ms: Optional[int] = None


@dataclass
class EventPublisherConfig:
    """Complete configuration for the event publisher"""
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    automation_mode: AutomationModeConfig = field(default_factory=AutomationModeConfig)
    credentials: Dict[str, TargetCredentials] = field(default_factory=dict)
    targets: Dict[str, TargetSettings] = field(default_factory=dict)

    def credentials_for(self, target: str) -> TargetCredentials:
        return self.credentials.get(target, TargetCredentials())

    def budget_for(self, target: str, definition_budget: Optional[int] = None) -> int:
        settings = self.targets.get(target)
        if settings and settings.budget_ms:
            return settings.budget_ms
        return definition_budget or self.automation.default_budget_ms


class ConfigurationManager:
    """
    Manages configuration loading, validation, and default values
    """

    def __init__(self, config_file: Optional[str] = None, known_targets: Optional[List[str]] = None):
        self.config_file = Path(config_file) if config_file else None
        self.known_targets = [t.lower() for t in (known_targets or [])]
        self.logger = logging.getLogger(f"{__name__}.ConfigurationManager")
        self._config: Optional[EventPublisherConfig] = None

    def load_configuration(self) -> EventPublisherConfig:
        """
        Load configuration from a JSON file and environment variables, then validate it
        """
        self.logger.info("Loading configuration from JSON file and environment variables")

        config = EventPublisherConfig()
        if self.config_file:
            config = self._load_from_json_file(self.config_file)

        config = self._load_from_environment(config)
        self.validate_configuration(config)

        self._config = config
        self.logger.info(
            f"Configuration loaded - Headless: {config.automation_mode.headless}, "
            f"Dry run: {config.automation.dry_run}, Targets with credentials: {sorted(config.credentials)}"
        )
        return config

    @property
    def config(self) -> EventPublisherConfig:
        if not self._config:
            self.load_configuration()
        return self._config

    def _load_from_json_file(self, config_path: Path) -> EventPublisherConfig:
        """Load configuration from a single JSON file"""
        if not config_path.exists():
            self.logger.warning(f"Configuration file not found: {config_path}, using defaults")
            return EventPublisherConfig()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in configuration file {config_path}: {e}")
            return EventPublisherConfig()

        return self._parse_config_data(config_data)

    def _parse_config_data(self, config_data: Dict[str, Any]) -> EventPublisherConfig:
        """Parse configuration data from JSON"""
        config = EventPublisherConfig()

        if 'automation' in config_data:
            config.automation = AutomationConfig(**{
                k: v for k, v in config_data['automation'].items()
                if k in AutomationConfig.__dataclass_fields__
            })

        if 'automation_mode' in config_data:
            config.automation_mode = AutomationModeConfig(**{
                k: v for k, v in config_data['automation_mode'].items()
                if k in AutomationModeConfig.__dataclass_fields__
            })

        for target_name, target_data in config_data.get('targets', {}).items():
            config.targets[target_name.lower()] = TargetSettings(**{
                k: v for k, v in target_data.items()
                if k in TargetSettings.__dataclass_fields__
            })

        # Credentials are deliberately not read from JSON files
        return config

    def _load_from_environment(self, config: EventPublisherConfig) -> EventPublisherConfig:
        """
        Override configuration with environment variables
        """
        mode = config.automation_mode
        mode.headless = self._get_env_bool('AUTOMATION_HEADLESS', mode.headless)
        mode.slow_motion = self._get_env_int('AUTOMATION_SLOW_MOTION', mode.slow_motion)
        mode.user_agent = os.getenv('AUTOMATION_USER_AGENT', mode.user_agent)

        automation = config.automation
        automation.max_retries = self._get_env_int('AUTOMATION_MAX_RETRIES', automation.max_retries)
        automation.element_wait_timeout = self._get_env_int('AUTOMATION_ELEMENT_WAIT_TIMEOUT', automation.element_wait_timeout)
        automation.navigation_timeout = self._get_env_int('AUTOMATION_NAVIGATION_TIMEOUT', automation.navigation_timeout)
        automation.typing_delay_min = self._get_env_int('AUTOMATION_TYPING_DELAY_MIN', automation.typing_delay_min)
        automation.typing_delay_max = self._get_env_int('AUTOMATION_TYPING_DELAY_MAX', automation.typing_delay_max)
        automation.log_level = os.getenv('AUTOMATION_LOG_LEVEL', automation.log_level).upper()
        automation.log_file = os.getenv('AUTOMATION_LOG_FILE', automation.log_file)
        automation.dry_run = self._get_env_bool('AUTOMATION_DRY_RUN', automation.dry_run)
        automation.execution_ceiling_ms = self._get_env_int('AUTOMATION_EXECUTION_CEILING', automation.execution_ceiling_ms)
        automation.response_headroom_ms = self._get_env_int('AUTOMATION_RESPONSE_HEADROOM', automation.response_headroom_ms)
        automation.targets_file = os.getenv('AUTOMATION_TARGETS_FILE', automation.targets_file)

        return self.load_target_environment(config, set(self.known_targets) | set(config.targets))

    def load_target_environment(self, config: EventPublisherConfig, target_names) -> EventPublisherConfig:
        """
        Read ``<TARGET>_EMAIL``, ``<TARGET>_PASSWORD`` and ``<TARGET>_BUDGET_MS`` for each target
        """
        for target in target_names:
            target = target.lower()
            prefix = target.upper()
            email = os.getenv(f'{prefix}_EMAIL', '').strip()
            password = os.getenv(f'{prefix}_PASSWORD', '')
            if email or password:
                config.credentials[target] = TargetCredentials(email=email, password=password)

            budget = self._get_env_int(f'{prefix}_BUDGET_MS', 0)
            if budget:
                config.targets.setdefault(target, TargetSettings()).budget_ms = budget

        return config

    def validate_configuration(self, config: EventPublisherConfig,
                               definition_budgets: Optional[Dict[str, Optional[int]]] = None) -> None:
        """
        Validate configuration and raise errors for inconsistent values
        """
        errors = []
        automation = config.automation

        if automation.log_level not in VALID_LOG_LEVELS:
            errors.append(f"AUTOMATION_LOG_LEVEL must be one of: {', '.join(VALID_LOG_LEVELS)}")

        if automation.max_retries < 0:
            errors.append("AUTOMATION_MAX_RETRIES must be non-negative")

        if automation.element_wait_timeout < 100:
            errors.append("AUTOMATION_ELEMENT_WAIT_TIMEOUT must be at least 100ms")

        if automation.navigation_timeout < 1000:
            errors.append("AUTOMATION_NAVIGATION_TIMEOUT must be at least 1000ms")

        if automation.typing_delay_min < 0 or automation.typing_delay_max < automation.typing_delay_min:
            errors.append("typing delays must satisfy 0 <= AUTOMATION_TYPING_DELAY_MIN <= AUTOMATION_TYPING_DELAY_MAX")

        budget_ceiling = automation.execution_ceiling_ms - automation.response_headroom_ms
        budgets = {'default': automation.default_budget_ms}
        for name, budget in (definition_budgets or {}).items():
            budgets[name] = config.budget_for(name, budget)
        budgets.update({name: s.budget_ms for name, s in config.targets.items() if s.budget_ms})
        for name, budget in budgets.items():
            if budget <= 0:
                errors.append(f"budget for {name} must be positive")
            elif budget > budget_ceiling:
                errors.append(
                    f"budget for {name} ({budget}ms) must stay below the execution ceiling "
                    f"minus response headroom ({budget_ceiling}ms)"
                )

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            self.logger.error(error_message)
            raise ValueError(error_message)

        self.logger.info("Configuration validation passed")

    def _get_env_bool(self, key: str, default: bool) -> bool:
        """Get boolean value from environment variable"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    def _get_env_int(self, key: str, default: int) -> int:
        """Get integer value from environment variable"""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            self.logger.warning(f"Invalid integer value for {key}, using default: {default}")
            return default

    def save_configuration(self, config: EventPublisherConfig, config_file: str) -> bool:
        """Save configuration (without credentials) to a JSON file"""
        try:
            output_file = Path(config_file)
            config_dict = asdict(config)
            config_dict.pop('credentials', None)

            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)

            self.logger.info(f"Configuration saved to {output_file}")
            return True

        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")
            return False
