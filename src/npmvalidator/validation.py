"""
Package name extraction and validation.

Follows the npm package naming rules: ``(@scope/)?name`` using only lowercase
letters, digits and ``-._~``. See https://github.com/npm/validate-npm-package-name.
"""

import re
from typing import NamedTuple

from npmvalidator.exceptions import InvalidPackageNameError
from npmvalidator.models.schemas import PackageIdentity

_PACKAGE_NAME_PATTERN = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")

EMPTY_NAME_ERROR = "Package name is required"
SCOPE_ONLY_ERROR = (
    "Scoped packages must include the package name. Example: @graphql-inspector/core"
)
INVALID_FORMAT_ERROR = 'Invalid package name format. Use "package-name" or "@scope/package-name"'


class ValidationResult(NamedTuple):
    valid: bool
    name: str
    error: str | None = None


def extract_package_name(raw: str | None) -> str:
    """Take the first whitespace-delimited token of user input.

    "@graphql-inspector/cli graphql" -> "@graphql-inspector/cli"
    """
    if not raw:
        return ""
    tokens = raw.split()
    return tokens[0] if tokens else ""


def validate_package_name(raw: str | None) -> ValidationResult:
    """Validate the package name found in user input.

    Args:
        raw: Raw user input; only the first token is considered.

    Returns:
        ValidationResult with the extracted name and, if invalid, a
        human-readable reason.
    """
    name = extract_package_name(raw)

    if not name:
        return ValidationResult(False, name, EMPTY_NAME_ERROR)

    if _PACKAGE_NAME_PATTERN.match(name):
        return ValidationResult(True, name)

    if name.startswith("@") and "/" not in name:
        return ValidationResult(False, name, SCOPE_ONLY_ERROR)

    return ValidationResult(False, name, INVALID_FORMAT_ERROR)


def parse_package_identity(raw: str | None) -> PackageIdentity:
    """Build a PackageIdentity from user input.

    Raises:
        InvalidPackageNameError: If the extracted name is not valid.
    """
    result = validate_package_name(raw)
    if not result.valid:
        raise InvalidPackageNameError(result.name, result.error or INVALID_FORMAT_ERROR)
    return PackageIdentity(name=result.name)
