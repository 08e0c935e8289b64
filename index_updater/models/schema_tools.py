from typing import Set

from index_updater.models.utils import parse_potential_percent


def contains_one_of(values_to_restrict: Set):
    """
    Generates a validator that checks if a value contains exactly one of the specified keys.
    """
    def one_of(field, value, error):
        found_objects = values_to_restrict.intersection(value.keys())
        if len(found_objects) > 1:
            error(field, f"More than one value is present: {sorted(found_objects)}")
        elif len(found_objects) < 1:
            error(field, f"No values are present from set: {sorted(values_to_restrict)}")
    return one_of


def is_fraction(field, value, error):
    """Cerberus check for a deviation written as a fraction (0.05) or a percentage ("5%")."""
    try:
        parsed = parse_potential_percent(value)
    except ValueError:
        error(field, f"Cannot parse '{value}' as a fraction or percentage")
        return
    if parsed < 0 or parsed > 1:
        error(field, f"Must be between 0 and 1 (or 0% and 100%), got {value}")
