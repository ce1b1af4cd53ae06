"""
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Any, Dict

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR+value}, ${VAR:?error}, ${VAR?error} and $$ for a literal dollar.
    """
    # Group 1: $$ escape
    # Group 2: braced name, 3: modifier, 4: argument
    # Group 5: bare name
    PATTERN = re.compile(
        r"\$(?:(\$)|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))"
    )

    @classmethod
    def interpolate(cls, template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        An unset variable without a default becomes an empty string, with a warning.

        :param template: The string containing placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises ConfigurationError: If a ${VAR:?error} variable is unset.
        """
        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            if match.group(1):
                return "$"
            var_name = match.group(2) or match.group(5)
            modifier = match.group(3)
            alt_value = match.group(4) or ""
            value = context.get(var_name)
            # With a colon, empty counts as unset.
            is_set = value is not None and (value != "" or not (modifier or "").startswith(":"))

            if modifier in (":-", "-"):
                return value if is_set else alt_value
            if modifier in (":+", "+"):
                return alt_value if is_set else ""
            if modifier in (":?", "?"):
                if not is_set:
                    raise ConfigurationError(f"required variable {var_name} is missing a value: {alt_value}")
                return value
            if value is None:
                logger.warning("The %s variable is not set. Defaulting to a blank string.", var_name)
                return ""
            return value

        return cls.PATTERN.sub(replace, template)

    @classmethod
    def interpolate_all(cls, value: Any, context: Dict[str, str]) -> Any:
        """
        Interpolates every string inside nested dicts and lists.
        Mapping keys are left untouched.
        """
        if isinstance(value, str):
            return cls.interpolate(value, context)
        if isinstance(value, dict):
            return {k: cls.interpolate_all(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [cls.interpolate_all(v, context) for v in value]
        return value
