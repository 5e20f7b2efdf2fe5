"""Pure domain layer: values, request DTOs, clock and classification rules."""
