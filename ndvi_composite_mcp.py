#!/usr/bin/env python3
"""
MCP Server for multi-satellite NDVI compositing.

This server exposes the NDVI compositing engine as tools: inspect the satellite
table and which sensors cover a given year, and build annual NDVI composites
(Sentinel-2, Landsat 8/7/5 with priority gap filling) over a point or polygon
using Google Earth Engine as the imagery archive.
"""

import json
import logging
import sys
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from fastmcp import FastMCP

from ndvi_composite import archive, composite, satellites, selection
from ndvi_composite.config import DEFAULT_BUFFER_DISTANCE, DEFAULT_CLOUD_THRESHOLD
from ndvi_composite.footprint import parse_footprint

# stdout carries the MCP protocol; logs go to stderr
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger('ndvi_composite_mcp')

# Initialize the MCP server
mcp = FastMCP("ndvi_composite_mcp")

CHARACTER_LIMIT = 25000  # Maximum response size in characters
SOURCE_CHOICES = [composite.COMBINED] + list(satellites.SATELLITES)

_archive = None


# ============================================================================
# ENUMS
# ============================================================================

class ResponseFormat(str, Enum):
    """Output format for tool responses."""
    JSON = "json"
    MARKDOWN = "markdown"


# ============================================================================
# PYDANTIC MODELS FOR INPUT VALIDATION
# ============================================================================

class FootprintInput(BaseModel):
    """Area of interest: either a buffered point or a polygon."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    longitude: Optional[float] = Field(
        default=None,
        description="Longitude of center point in decimal degrees (e.g., 5.37, -109.53)",
        ge=-180.0,
        le=180.0
    )
    latitude: Optional[float] = Field(
        default=None,
        description="Latitude of center point in decimal degrees (e.g., 43.29, 29.19)",
        ge=-90.0,
        le=90.0
    )
    buffer_distance: int = Field(
        default=DEFAULT_BUFFER_DISTANCE,
        description="Half-width of the square around the point in meters (e.g., 5000, 10000)",
        ge=100,
        le=100000
    )
    polygon: Optional[List[List[float]]] = Field(
        default=None,
        description="Polygon as a list of [lon, lat] pairs; takes precedence over the point",
        min_length=3
    )

    @model_validator(mode='after')
    def validate_geometry(self):
        """Require a polygon or a complete point."""
        if self.polygon is None and (self.longitude is None or self.latitude is None):
            raise ValueError("Provide either polygon or both longitude and latitude")
        return self

    def to_footprint(self):
        if self.polygon is not None:
            return parse_footprint(self.polygon)
        return parse_footprint((self.longitude, self.latitude), self.buffer_distance)


class NDVISelectSourcesInput(BaseModel):
    """Input model for listing the candidate satellites of a year."""
    model_config = ConfigDict(extra='forbid')

    year: int = Field(..., description="Calendar year (e.g., 2010, 2017)", ge=1950, le=2100)
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable or 'json' for machine-readable"
    )


class NDVIAvailabilityInput(BaseModel):
    """Input model for the per-year satellite availability table."""
    model_config = ConfigDict(extra='forbid')

    start_year: int = Field(default=2004, description="First year (e.g., 2004)", ge=1950, le=2100)
    end_year: int = Field(default=2024, description="Last year (e.g., 2024)", ge=1950, le=2100)
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable or 'json' for machine-readable"
    )

    @field_validator('end_year')
    @classmethod
    def validate_year_range(cls, v: int, info) -> int:
        """Ensure end_year is not before start_year."""
        if 'start_year' in info.data and v < info.data['start_year']:
            raise ValueError("end_year must not precede start_year")
        return v


class NDVICompositeInput(FootprintInput):
    """Input model for building an NDVI composite."""

    year: int = Field(..., description="Calendar year to composite (e.g., 2010, 2017)", ge=1950, le=2100)
    source: str = Field(
        default=composite.COMBINED,
        description="'combined' for the multi-satellite composite, or one of 'S2', 'L8', 'L7', 'L5'"
    )
    cloud_coverage: float = Field(
        default=DEFAULT_CLOUD_THRESHOLD,
        description="Maximum scene cloud cover percentage (e.g., 10.0, 20.0)",
        ge=0.0,
        le=100.0
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable or 'json' for machine-readable"
    )

    @field_validator('source')
    @classmethod
    def validate_source(cls, v: str) -> str:
        """Ensure the source is known."""
        if v.lower() == composite.COMBINED:
            return composite.COMBINED
        if v.upper() in satellites.SATELLITES:
            return v.upper()
        raise ValueError(f"Unknown source '{v}'. Choose one of: {', '.join(SOURCE_CHOICES)}")


class NDVISeriesInput(FootprintInput):
    """Input model for a multi-year composite series."""

    start_year: int = Field(default=2004, description="First year (e.g., 2004)", ge=1950, le=2100)
    end_year: int = Field(default=2024, description="Last year (e.g., 2024)", ge=1950, le=2100)
    cloud_coverage: float = Field(
        default=DEFAULT_CLOUD_THRESHOLD,
        description="Maximum scene cloud cover percentage (e.g., 10.0, 20.0)",
        ge=0.0,
        le=100.0
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable or 'json' for machine-readable"
    )

    @field_validator('end_year')
    @classmethod
    def validate_year_range(cls, v: int, info) -> int:
        """Ensure end_year is not before start_year."""
        if 'start_year' in info.data and v < info.data['start_year']:
            raise ValueError("end_year must not precede start_year")
        return v


# ============================================================================
# SHARED UTILITY FUNCTIONS
# ============================================================================

def _get_archive() -> archive.RasterArchive:
    """Create the Earth Engine archive on first use."""
    global _archive
    if _archive is None:
        _archive = archive.EarthEngineArchive()
    return _archive


def _handle_error(e: Exception) -> str:
    """
    Consistent error formatting across all tools.

    Returns clear, actionable error messages for common failure scenarios.
    """
    error_msg = str(e)

    if "authenticate" in error_msg.lower() or "credentials" in error_msg.lower():
        return (
            f"Error: Earth Engine authentication required. "
            f"Please run 'earthengine authenticate' in your terminal first. "
            f"Details: {error_msg}"
        )
    elif isinstance(e, KeyError) or "unknown satellite" in error_msg.lower():
        return f"Error: Unknown satellite. Choose one of {', '.join(SOURCE_CHOICES)}. Details: {error_msg}"
    elif "mismatched" in error_msg.lower():
        return f"Error: Raster grids do not match. Details: {error_msg}"
    elif isinstance(e, ValueError):
        return f"Error: Invalid input. Details: {error_msg}"
    else:
        return f"Error: {error_msg}"


def _extraction_summary(result) -> dict:
    return {
        "source": result.source_identifier,
        "name": satellites.SATELLITES[result.source_identifier].name,
        "status": result.status.value,
        "available": result.available,
        "image_count": result.contributing_image_count,
        "resolution": result.pixel_resolution,
        "error": result.error,
    }


def _report_summary(report) -> dict:
    ndvi = report.composite.ndvi
    return {
        "year": report.year,
        "source": report.source,
        "available": report.available,
        "provenance": report.source_label,
        "contributing_sources": report.composite.contributing_sources,
        "resolution": report.composite.resolution,
        "shape": list(ndvi.shape) if ndvi is not None else None,
        "valid_fraction": round(ndvi.valid_fraction, 4) if ndvi is not None else None,
        "extractions": [_extraction_summary(r) for r in report.extractions],
    }


def _format_report_markdown(summary: dict) -> str:
    lines = [
        f"# NDVI {summary['year']} ({summary['provenance']})",
        "",
    ]
    if summary['available']:
        rows, cols = summary['shape']
        lines += [
            f"- **Resolution**: {summary['resolution']} m",
            f"- **Grid**: {rows} × {cols} pixels",
            f"- **Valid coverage**: {summary['valid_fraction'] * 100:.1f}%",
        ]
    else:
        lines.append(f"No NDVI data available for {summary['year']}.")

    if summary['extractions']:
        lines += ["", "## Sources", ""]
        for item in summary['extractions']:
            detail = f"{item['image_count']} images" if item['available'] else item['status']
            if item['error']:
                detail += f" ({item['error']})"
            lines.append(f"- **{item['name']}**: {detail}")

    return "\n".join(lines)


def _truncate(text: str) -> str:
    if len(text) > CHARACTER_LIMIT:
        return text[:CHARACTER_LIMIT] + "\n\n[Response truncated]"
    return text


# ============================================================================
# MCP TOOL IMPLEMENTATIONS
# ============================================================================

@mcp.tool(
    name="ndvi_select_sources",
    annotations={
        "title": "List Candidate Satellites for a Year",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def ndvi_select_sources(params: NDVISelectSourcesInput) -> str:
    """
    List the satellites the composite would use for a year, highest priority first.

    Each candidate is flagged with whether the sensor was operational that year.
    Years outside every supported era return an empty list.
    """
    try:
        candidates = selection.select_sources(params.year)
        items = [
            {
                "source": source.identifier,
                "name": source.name,
                "native_resolution": source.native_resolution,
                "operational": satellites.is_operational(source, params.year),
                "operational_window": satellites.operational_window(source),
            }
            for source in candidates
        ]

        if params.response_format == ResponseFormat.JSON:
            return json.dumps({"year": params.year, "candidates": items}, indent=2)

        if not items:
            return f"Year {params.year} is outside the range of available satellites."

        lines = [f"# Candidate satellites for {params.year}", ""]
        for rank, item in enumerate(items, 1):
            state = "operational" if item['operational'] else "not operational"
            lines.append(
                f"{rank}. **{item['name']}** ({item['native_resolution']} m, "
                f"{item['operational_window']}): {state}"
            )
        return "\n".join(lines)

    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="ndvi_satellite_availability",
    annotations={
        "title": "Satellite Availability by Year",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def ndvi_satellite_availability(params: NDVIAvailabilityInput) -> str:
    """
    Show which satellites were operational in each year of a range.
    """
    try:
        summary = selection.availability_summary(params.start_year, params.end_year)

        if params.response_format == ResponseFormat.JSON:
            return json.dumps({str(year): names for year, names in summary.items()}, indent=2)

        lines = ["# Satellites available by year", ""]
        for year, names in summary.items():
            lines.append(f"- **{year}**: {', '.join(names) if names else 'none'}")
        return _truncate("\n".join(lines))

    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="ndvi_composite",
    annotations={
        "title": "Build Annual NDVI Composite",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True
    }
)
async def ndvi_composite(params: NDVICompositeInput) -> str:
    """
    Build the annual median NDVI for a region from one satellite or the
    multi-satellite composite.

    In 'combined' mode the highest-priority satellite fills the grid first and
    lower-priority satellites only fill pixels that are still cloud-masked or
    missing. The response reports which satellites contributed, the valid
    coverage of the result and per-satellite diagnostics (image counts, or why
    a satellite was unavailable).

    Error Handling:
        - Returns "Error: Earth Engine authentication required" if EE not authenticated
        - Returns "Error: Invalid input" for malformed geometry or years
    """
    try:
        report = composite.compute_ndvi(
            params.to_footprint(),
            params.year,
            _get_archive(),
            source=params.source,
            cloud_threshold=params.cloud_coverage,
        )
        summary = _report_summary(report)

        if params.response_format == ResponseFormat.JSON:
            return json.dumps(summary, indent=2)
        return _truncate(_format_report_markdown(summary))

    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="ndvi_composite_series",
    annotations={
        "title": "Build NDVI Composites for a Range of Years",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True
    }
)
async def ndvi_composite_series(params: NDVISeriesInput) -> str:
    """
    Build the combined NDVI composite for every year in a range and report
    the provenance and valid coverage of each year.
    """
    try:
        reports = composite.composite_series(
            params.to_footprint(),
            range(params.start_year, params.end_year + 1),
            _get_archive(),
            cloud_threshold=params.cloud_coverage,
        )
        summaries = [_report_summary(report) for report in reports]

        if params.response_format == ResponseFormat.JSON:
            return _truncate(json.dumps(summaries, indent=2))

        lines = [f"# NDVI composites {params.start_year}-{params.end_year}", ""]
        for item in summaries:
            if item['available']:
                lines.append(
                    f"- **{item['year']}**: {item['provenance']} "
                    f"({item['valid_fraction'] * 100:.1f}% valid)"
                )
            else:
                lines.append(f"- **{item['year']}**: no data")
        return _truncate("\n".join(lines))

    except Exception as e:
        return _handle_error(e)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    mcp.run()
