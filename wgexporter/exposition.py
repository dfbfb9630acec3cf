"""Prometheus text exposition format (0.0.4) rendering."""

from typing import Iterable, Union

from wgexporter.models import MetricSample

CONTENT_TYPE = 'text/plain; version=0.0.4; charset=utf-8'


def escape_label_value(value: str) -> str:
    """Escape backslash, double quote and newline in a label value."""
    return value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


def escape_help(text: str) -> str:
    """Escape backslash and newline in HELP text."""
    return text.replace('\\', '\\\\').replace('\n', '\\n')


def format_value(value: Union[int, float, bool]) -> str:
    """Format a sample value; integral values render without a decimal point."""
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, int):
        return str(value)
    if value != value:
        return 'NaN'
    if value in (float('inf'), float('-inf')):
        return '+Inf' if value > 0 else '-Inf'
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_labels(labels: dict[str, str]) -> str:
    """Render labels as {k="v",...} in insertion order, or "" when empty."""
    if not labels:
        return ''
    pairs = ','.join(f'{key}="{escape_label_value(str(value))}"' for key, value in labels.items())
    return '{' + pairs + '}'


def format_sample(sample: MetricSample) -> str:
    """Render one sample line: name{k="v",...} value"""
    return f"{sample.name}{format_labels(sample.labels)} {format_value(sample.value)}"


def render(samples: Iterable[MetricSample]) -> str:
    """Render samples grouped into metric families.

    Families appear in first-seen order, each preceded by exactly one HELP
    and TYPE line. The HELP/TYPE of the first sample of a name wins.

    Args:
        samples: Samples in collection order

    Returns:
        Exposition text, newline terminated unless empty
    """
    # Scoped to this call so concurrent renders never share declarations
    families: dict[str, list[MetricSample]] = {}
    for sample in samples:
        families.setdefault(sample.name, []).append(sample)

    lines: list[str] = []
    for name, members in families.items():
        head = members[0]
        lines.append(f"# HELP {name} {escape_help(head.help)}")
        lines.append(f"# TYPE {name} {head.kind.value}")
        lines.extend(format_sample(sample) for sample in members)

    return '\n'.join(lines) + '\n' if lines else ''
