# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""Exception types raised during a composition pass.

Hierarchy:
    CompositionError (base)
    ├── InvalidAttribute - required field missing with no default
    ├── InvalidConfiguration - every InvalidAttribute of one pass
    ├── AmbiguousComposition - conflicting conditional construction
    ├── DanglingRequiredReference - mandatory reference resolved to null
    ├── UnresolvedReference - placeholder left at the emitter boundary
    └── BlockingViolations - validation violations at the emitter boundary
"""

from typing import Any, Dict, List, Optional


class CompositionError(Exception):
    """Base exception for composition failures.

    Attributes:
        message: Human-readable error description
        context: Additional detail (descriptor keys, field names, ...)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class InvalidAttribute(CompositionError):
    """A descriptor is missing required fields that have no default."""

    def __init__(self, key: str, fields: List[str]):
        super().__init__(
            f"{key}: missing required attribute(s) {', '.join(fields)}",
            {"key": key},
        )
        self.key = key
        self.fields = list(fields)


class InvalidConfiguration(CompositionError):
    """Every attribute error found in one pass, reported together."""

    def __init__(self, errors: List[InvalidAttribute]):
        super().__init__(
            "; ".join(error.message for error in errors),
            {"errors": len(errors)},
        )
        self.errors = list(errors)


class AmbiguousComposition(CompositionError):
    """Conditional groups that should partition a flag did not.

    Examples:
        - both the forward and the redirect listener branch are enabled
        - two descriptors share the same kind and key
    """

    pass


class DanglingRequiredReference(CompositionError):
    """One or more mandatory references resolved to the null sentinel."""

    def __init__(self, references: List[str]):
        super().__init__(
            f"unsatisfiable required reference(s): {', '.join(references)}",
            {"count": len(references)},
        )
        self.references = list(references)


class UnresolvedReference(CompositionError):
    """A descriptor still holds a reference placeholder at emission time."""

    pass


class BlockingViolations(CompositionError):
    """The composition carries validation violations and cannot be emitted."""

    def __init__(self, violations):
        super().__init__(
            "refusing to emit a composition with violations: "
            + "; ".join(str(v) for v in violations),
            {"violations": len(violations)},
        )
        self.violations = list(violations)
