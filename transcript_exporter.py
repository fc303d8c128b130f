"""
CSV export and summary statistics for fetched transcripts
"""
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence, Union

import aiofiles
import pandas as pd
from rich.console import Console
from rich.table import Table

from config import DateRange
from record_normalizer import CSV_HEADERS, TranscriptRecord

logger = logging.getLogger(__name__)
console = Console()


def _quote(value: str) -> str:
    return '"' + (value or '').replace('"', '""') + '"'


def to_csv(records: Iterable[TranscriptRecord]) -> str:
    """
    Render records as CSV text: a header row, then one row per record.

    Only the transcript column is quoted. Other columns are written as-is and
    are not expected to contain commas.
    """
    lines = [','.join(CSV_HEADERS)]
    for record in records:
        row = record.as_row()
        row[6] = _quote(record.transcript)
        lines.append(','.join(row))
    return '\n'.join(lines)


def default_export_name(date_range: DateRange) -> str:
    return f"justcall_transcripts_{date_range.start.isoformat()}_{date_range.end.isoformat()}.csv"


async def save_csv(records: Sequence[TranscriptRecord], path: Union[str, Path]) -> Path:
    """Write the CSV blob to ``path``, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, 'w', encoding='utf-8', newline='') as f:
        await f.write(to_csv(records))
    logger.info(f"Saved {len(records)} records to {path}")
    return path


def summarize(records: Sequence[TranscriptRecord]) -> Dict[str, Any]:
    """Calculate summary statistics."""
    if not records:
        return {'total_calls': 0, 'calls_with_transcripts': 0, 'by_direction': {},
                'total_duration_seconds': 0, 'average_duration_seconds': 0.0}

    df = pd.DataFrame([record.to_dict() for record in records])
    durations = pd.to_numeric(df['duration'], errors='coerce').fillna(0)

    return {
        'total_calls': len(df),
        'calls_with_transcripts': int(sum(record.has_transcript for record in records)),
        'by_direction': {str(k): int(v) for k, v in df['direction'].value_counts().items()},
        'total_duration_seconds': int(durations.sum()),
        'average_duration_seconds': round(float(durations.mean()), 1),
    }


def display_summary(summary: Dict[str, Any], output_file: Union[str, Path, None] = None):
    """Display a nice summary table."""
    table = Table(title="Export Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total Calls Found", str(summary['total_calls']))
    table.add_row("Calls With Transcripts", str(summary['calls_with_transcripts']))
    for direction, count in summary['by_direction'].items():
        table.add_row(f"  {direction}", str(count))
    table.add_row("Total Duration (s)", str(summary['total_duration_seconds']))
    table.add_row("Average Duration (s)", str(summary['average_duration_seconds']))
    if output_file:
        table.add_row("Output File", str(output_file))

    console.print(table)
