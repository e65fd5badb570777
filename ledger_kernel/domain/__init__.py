"""Pure domain layer: value objects, enums, DTOs, clock."""
