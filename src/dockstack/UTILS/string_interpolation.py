"""
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# $$ | ${VAR} | ${VAR:-default} | ${VAR-default} | ${VAR:+alt} | ${VAR+alt} | $VAR
_PATTERN = re.compile(
    r"\$(?:(?P<escaped>\$)"
    r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<colon>:)?(?P<op>[-+?])(?P<arg>[^}]*))?\}"
    r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*))"
)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR:?error} and $$ as a literal dollar sign.
    """

    @staticmethod
    def interpolate(template: str, context: Mapping[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        Unset variables without a default resolve to the empty string and log a warning.

        :param template: The string containing placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises ValueError: On an unterminated ``${`` or a ``${VAR:?message}`` whose variable is unset.
        """

        def replace(match):
            if match.group("escaped"):
                return "$"
            var_name = match.group("braced") or match.group("named")
            op = match.group("op")
            arg = match.group("arg")
            value = context.get(var_name)
            # With a colon, empty counts as unset
            is_set = bool(value) if match.group("colon") else value is not None

            if op == "-":
                return value if is_set else arg
            if op == "+":
                return arg if is_set else ""
            if op == "?":
                if not is_set:
                    raise ValueError(arg or f"required variable {var_name} is missing a value")
                return value
            if value is None:
                logger.warning("The %s variable is not set. Defaulting to a blank string.", var_name)
                return ""
            return value

        def literal(text):
            if "${" in text:
                raise ValueError(f"Invalid interpolation format in {template!r}")
            return text

        result = []
        pos = 0
        for match in _PATTERN.finditer(template):
            result.append(literal(template[pos:match.start()]))
            result.append(replace(match))
            pos = match.end()
        result.append(literal(template[pos:]))
        return "".join(result)

    @classmethod
    def interpolate_value(cls, value: Any, context: Mapping[str, str]) -> Any:
        """
        Interpolates every string inside nested dicts and lists. Keys are left untouched.
        """
        if isinstance(value, str):
            return cls.interpolate(value, context)
        if isinstance(value, dict):
            return {k: cls.interpolate_value(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [cls.interpolate_value(v, context) for v in value]
        return value

    @staticmethod
    def escape(value: str) -> str:
        """Escapes literal dollar signs so that interpolation returns the input unchanged."""
        return value.replace("$", "$$")
