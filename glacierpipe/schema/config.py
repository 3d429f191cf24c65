# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Schema of Pipe Config."""

from __future__ import annotations

import re
from typing import Any, Dict, Literal, Optional, Union
from urllib.parse import urlparse

import pydantic
import yaml
from pydantic import AliasChoices, ConfigDict, Field

from glacierpipe.errors import InvalidConfigError
from glacierpipe.net.qos import QOSThrottlingStrategy
from glacierpipe.net.throttling import FixedThrottlingStrategy, ThrottlingStrategy
from glacierpipe.pipe import DEFAULT_MAX_RETRIES, DEFAULT_PART_SIZE
from glacierpipe.utils.humanize import parse_binary_size, parse_binary_size_int
from glacierpipe.utils.parts import MAX_PART_SIZE, MIN_PART_SIZE, is_power_of_two

AUTOMATIC = "automatic"

GLACIER_ENDPOINTS: Dict[str, str] = {
    region: f"https://glacier.{region}.amazonaws.com/"
    for region in (
        "us-east-1",
        "us-west-2",
        "us-west-1",
        "eu-west-1",
        "ap-southeast-2",
        "ap-northeast-1",
    )
}

_REGION_RE = re.compile(r"^glacier[.-]([a-z0-9-]+)\.amazonaws\.com(?:\.cn)?$")


def resolve_endpoint(endpoint: str) -> str:
    """Map a built-in region alias to its endpoint URL."""
    return GLACIER_ENDPOINTS.get(endpoint.strip().lower(), endpoint.strip())


def region_from_endpoint(endpoint: str) -> Optional[str]:
    """Extract the AWS region from a Glacier endpoint URL."""
    host = urlparse(endpoint).hostname or ""
    matches = _REGION_RE.match(host.lower())
    return matches[1] if matches else None


class PipeConfig(pydantic.BaseModel):
    """Pipe config."""

    # Field names come first in the aliases so that overrides win over file keys.
    model_config = ConfigDict(extra="ignore")

    endpoint: str
    vault: str = Field(
        validation_alias=AliasChoices("vault", "vault-name", "vaultName")
    )
    part_size: int = Field(
        DEFAULT_PART_SIZE,
        validation_alias=AliasChoices("part_size", "partsize", "part-size"),
    )
    max_retries: int = Field(
        DEFAULT_MAX_RETRIES,
        validation_alias=AliasChoices("max_retries", "max-retries", "maxRetries"),
    )
    max_upload_rate: Optional[Union[Literal["automatic"], int]] = Field(
        None,
        validation_alias=AliasChoices(
            "max_upload_rate", "max-upload-rate", "maxUploadRate"
        ),
    )
    qos_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("qos_url", "qos-url", "qosUrl")
    )
    region: Optional[str] = None
    access_key: str = Field(
        validation_alias=AliasChoices("access_key", "access-key", "accessKey")
    )
    secret_key: str = Field(
        validation_alias=AliasChoices("secret_key", "secret-key", "secretKey")
    )

    @pydantic.field_validator("endpoint", mode="before")
    @classmethod
    def validate_endpoint(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        endpoint = resolve_endpoint(value)
        if urlparse(endpoint).scheme not in ("http", "https"):
            raise ValueError(
                f"'{value}' is neither a known region nor an http(s) URL"
            )
        return endpoint

    @pydantic.field_validator("part_size", mode="before")
    @classmethod
    def parse_part_size(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_binary_size_int(value)
        return value

    @pydantic.field_validator("part_size")
    @classmethod
    def validate_part_size(cls, value: int) -> int:
        if not MIN_PART_SIZE <= value <= MAX_PART_SIZE or not is_power_of_two(value):
            raise ValueError(
                "must be a power of two between 1 MiB and 4 GiB (inclusive)"
            )
        return value

    @pydantic.field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @pydantic.field_validator("max_upload_rate", mode="before")
    @classmethod
    def parse_max_upload_rate(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        if value.strip().lower() == AUTOMATIC:
            return AUTOMATIC
        rate = parse_binary_size(value)
        if rate <= 0:
            raise ValueError("must be positive")
        return max(int(rate), 1)

    @pydantic.field_validator("max_upload_rate")
    @classmethod
    def validate_max_upload_rate(
        cls, value: Optional[Union[str, int]]
    ) -> Optional[Union[str, int]]:
        if isinstance(value, int) and value <= 0:
            raise ValueError("must be positive")
        return value

    @pydantic.field_validator("access_key", "secret_key")
    @classmethod
    def validate_credential(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @pydantic.model_validator(mode="after")
    def derive_defaults(self) -> PipeConfig:
        if self.qos_url is None:
            self.qos_url = qos_url_for(self.endpoint)
        if self.region is None:
            region = region_from_endpoint(self.endpoint)
            if region is None:
                raise ValueError(
                    f"cannot derive the region from '{self.endpoint}'; set 'region'"
                )
            self.region = region
        return self

    @property
    def adaptive(self) -> bool:
        """Whether the upload rate is controlled by network latency."""
        return self.max_upload_rate == AUTOMATIC


def qos_url_for(endpoint: str) -> str:
    """Return the URL probed for latency; the endpoint over plain HTTP."""
    if endpoint.startswith("https://"):
        return "http://" + endpoint[len("https://") :]
    return endpoint


def load_config(path: Optional[str] = None, **overrides: Any) -> PipeConfig:
    """Load a config from a YAML file, with overrides taking precedence.

    Args:
        path: YAML file of settings; skipped if None.
        overrides: settings by field name; ``None`` values are ignored.

    Raises:
        InvalidConfigError: the file is unreadable or the settings are invalid.

    """
    config_dict: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as config_file:
                loaded = yaml.safe_load(config_file)
        except OSError as exc:
            raise InvalidConfigError(f"Cannot read '{path}': {exc}") from exc
        except yaml.YAMLError as exc:
            raise InvalidConfigError(f"Cannot parse '{path}': {exc}") from exc

        if loaded is not None and not isinstance(loaded, dict):
            raise InvalidConfigError(f"'{path}' must contain a mapping")
        config_dict.update(loaded or {})

    config_dict.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return PipeConfig.model_validate(config_dict)
    except pydantic.ValidationError as exc:
        raise InvalidConfigError(str(exc)) from exc


def build_throttling_strategy(config: PipeConfig) -> Optional[ThrottlingStrategy]:
    """Create the throttling strategy the config asks for, if any."""
    if config.max_upload_rate is None:
        return None
    if config.max_upload_rate == AUTOMATIC:
        assert config.qos_url is not None
        return QOSThrottlingStrategy.from_url(config.qos_url)
    return FixedThrottlingStrategy(float(config.max_upload_rate))
