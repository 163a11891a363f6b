"""Error taxonomy for registry parsing and resolution.

Every failure raised while building a registry is a ``RegistryError`` carrying
a stable ``code`` plus enough context (element kind, entity name, field) to
find the offending fragment in vk.xml without re-parsing it.
"""

VALID_ERROR_CODES = {
    "UNEXPECTED_END_OF_STREAM",
    "MISSING_TYPES_SECTION",
    "MALFORMED_SOURCE",
    "MISSING_REQUIRED_FIELD",
    "UNRECOGNIZED_CATEGORY",
    "MALFORMED_NUMERIC_LITERAL",
    "UNKNOWN_ENUM_TARGET",
    "INVALID_STRATEGY_FOR_ENTITY",
    "DEPENDENCY_CYCLE",
}


class RegistryError(Exception):
    code = ""

    def __init__(
        self,
        message: str,
        *,
        element: str | None = None,
        entity: str | None = None,
        field: str | None = None,
    ):
        if self.code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown registry error code: {self.code!r}")
        super().__init__(message)
        self.message = message
        self.element = element
        self.entity = entity
        self.field = field

    def context(self) -> str:
        parts = []
        if self.element:
            parts.append(f"<{self.element}>")
        if self.entity:
            parts.append(self.entity)
        if self.field:
            parts.append(f"field {self.field!r}")
        return " ".join(parts)

    def __str__(self) -> str:
        context = self.context()
        if context:
            return f"{self.message} ({context})"
        return self.message


class UnexpectedEndOfStream(RegistryError):
    code = "UNEXPECTED_END_OF_STREAM"


class MissingTypesSection(UnexpectedEndOfStream):
    code = "MISSING_TYPES_SECTION"

    def __init__(self):
        super().__init__("No <types> section was found in the registry", element="registry")


class MalformedSource(RegistryError):
    code = "MALFORMED_SOURCE"


class MissingRequiredField(RegistryError):
    code = "MISSING_REQUIRED_FIELD"

    def __init__(self, element: str, field: str, entity: str | None = None):
        super().__init__(
            f"<{element}> is missing required attribute or child {field!r}",
            element=element,
            entity=entity,
            field=field,
        )


class UnrecognizedCategory(RegistryError):
    code = "UNRECOGNIZED_CATEGORY"

    def __init__(
        self, element: str, field: str, value: str, entity: str | None = None
    ):
        super().__init__(
            f"Unrecognized {field} value {value!r}",
            element=element,
            entity=entity,
            field=field,
        )
        self.value = value


class MalformedNumericLiteral(RegistryError):
    code = "MALFORMED_NUMERIC_LITERAL"

    def __init__(
        self,
        field: str,
        raw: str,
        element: str | None = None,
        entity: str | None = None,
        reason: str | None = None,
    ):
        message = reason or f"Could not parse {field}={raw!r}"
        super().__init__(message, element=element, entity=entity, field=field)
        self.raw = raw


class UnknownEnumTarget(RegistryError):
    code = "UNKNOWN_ENUM_TARGET"

    def __init__(self, owner: str, target: str, value_name: str):
        super().__init__(
            f"{value_name} extends unknown enum {target!r}",
            element="enum",
            entity=owner,
            field="extends",
        )
        self.owner = owner
        self.target = target
        self.value_name = value_name


class InvalidStrategyForEntity(RegistryError):
    code = "INVALID_STRATEGY_FOR_ENTITY"

    def __init__(self, owner: str, value_name: str):
        super().__init__(
            f"{value_name} uses an offset but {owner} has no extension number",
            element="enum",
            entity=owner,
            field="offset",
        )
        self.owner = owner
        self.value_name = value_name


class DependencyCycle(RegistryError):
    code = "DEPENDENCY_CYCLE"

    def __init__(self, names: frozenset[str]):
        super().__init__(
            f"Dependency cycle between extensions: {', '.join(sorted(names))}",
            element="extension",
            field="requires",
        )
        self.names = names
