"""
Era-based source selection.

For a given year the selector returns the ordered candidate satellites,
highest priority first. Priority reflects sensor capability (resolution,
recency) only; whether a candidate actually delivers data that year is
decided later by the extractor.
"""

from datetime import date
from typing import Dict, List, NamedTuple, Optional, Tuple

from .config import MAX_YEAR, MIN_YEAR
from .satellites import SATELLITES, SatelliteSource, is_operational


class Era(NamedTuple):
    start_year: int
    end_year: Optional[int]  # None = up to the current year
    candidates: Tuple[str, ...]


ERAS: Tuple[Era, ...] = (
    Era(2015, None, ('S2', 'L8', 'L7')),
    Era(2013, 2014, ('L8', 'L7', 'L5')),
    Era(2004, 2012, ('L7', 'L5')),
)


def validate_year(year: int) -> int:
    """Reject values that cannot be a calendar year for this archive."""
    if isinstance(year, bool) or not isinstance(year, int):
        raise ValueError(f"Year must be an integer, got {year!r}")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValueError(f"Year {year} outside supported range {MIN_YEAR}-{MAX_YEAR}")
    return year


def find_era(year: int, current_year: Optional[int] = None) -> Optional[Era]:
    if current_year is None:
        current_year = date.today().year

    for era in ERAS:
        end_year = era.end_year if era.end_year is not None else current_year
        if era.start_year <= year <= end_year:
            return era
    return None


def select_sources(year: int, current_year: Optional[int] = None) -> List[SatelliteSource]:
    """
    Ordered candidate satellites for a year.

    Parameters:
    -----------
    year : int
        Calendar year to composite
    current_year : Optional[int]
        Upper bound of the open-ended modern era (default: today's year)

    Returns:
    --------
    List[SatelliteSource] : Candidates, highest priority first. Empty when the
                            year falls outside every era.
    """
    validate_year(year)
    era = find_era(year, current_year)
    if era is None:
        return []
    return [SATELLITES[identifier] for identifier in era.candidates]


def availability_summary(start_year: int, end_year: int) -> Dict[int, List[str]]:
    """Operational satellite names per year, in table order."""
    validate_year(start_year)
    validate_year(end_year)
    if end_year < start_year:
        raise ValueError("end_year must not precede start_year")

    return {
        year: [source.name for source in SATELLITES.values() if is_operational(source, year)]
        for year in range(start_year, end_year + 1)
    }
