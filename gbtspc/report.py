"""
Diagnostic report output for SPC sequence conversions.

Renders the EventLog of a conversion as a plain text listing or as an
XHTML document with one table row per decoded event.
"""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional
from xml.dom import minidom

from aram import AramImage
from seq_base import APP_NAME, APP_VERSION
from seq_events import EventLog, SeqEventReport
from sequencer import ConversionResult


REPORT_CSS_FILE = "gbtspc2mid.css"
XHTML_NS = "http://www.w3.org/1999/xhtml"


def _trailer(result: ConversionResult) -> str:
    if result.success:
        return f"Conversion finished at tick {result.seq.tick} ({result.seq.time:.2f}s)."
    return f"Conversion aborted at tick {result.seq.tick}: {result.error}"


def _event_row(ev: SeqEventReport, aram: AramImage) -> str:
    return f"{ev.track + 1:2d}  {ev.tick:7d}  ${ev.addr:04X}  {ev.hex_dump(aram):<17s}  {ev.note}"


def _render_text(log: EventLog, trailer: str, aram: Optional[AramImage]) -> str:
    output = [f"{APP_NAME} {APP_VERSION}", ""]

    output.append("Informations:")
    for line in log.info:
        output.append(f"  {line}")
    output.append("")

    if aram is not None:
        output.append("Sequence:")
        output.append(" #     Tick  Addr   Hex Dump           Note")
        for ev in log.events:
            output.append(_event_row(ev, aram))
        output.append("")

    if log.messages:
        output.append("Messages:")
        for text in log.messages:
            output.append(f"  {text}")
        output.append("")

    output.append(trailer)
    return '\n'.join(output) + '\n'


def render_text_report(result: ConversionResult, aram: AramImage) -> str:
    """Generate a plain text listing of a conversion.

    Args:
        result: Conversion outcome (its log holds the event records)
        aram: Memory image the events were decoded from (for hex dumps)

    Returns:
        Report text
    """
    return _render_text(result.log, _trailer(result), aram)


def _render_html(log: EventLog, trailer: str, aram: Optional[AramImage]) -> str:
    title = f"{APP_NAME} {APP_VERSION}"

    root = ET.Element('html', xmlns=XHTML_NS)
    root.set('xml:lang', 'en')
    head = ET.SubElement(root, 'head')
    ET.SubElement(head, 'link', rel='stylesheet', type='text/css',
                  media='screen,tv,projection', href=REPORT_CSS_FILE)
    ET.SubElement(head, 'title').text = f"Data View - {title}"

    body = ET.SubElement(root, 'body')
    ET.SubElement(body, 'h1').text = title
    page = ET.SubElement(body, 'div', {'class': 'section'})

    ET.SubElement(page, 'h2').text = "Informations"
    info_section = ET.SubElement(page, 'div', {'class': 'section', 'id': 'informations'})
    info_list = ET.SubElement(info_section, 'ul', {'class': 'info-tree'})
    for line in log.info:
        ET.SubElement(info_list, 'li').text = line

    if aram is not None:
        ET.SubElement(page, 'h2').text = "Data Dump"
        dump_section = ET.SubElement(page, 'div', {'class': 'section', 'id': 'data-dump'})
        ET.SubElement(dump_section, 'p').text = (
            f"You can filter output by using stylesheet. Write {REPORT_CSS_FILE} as you like!")
        ET.SubElement(dump_section, 'h3').text = "Sequence"
        table_section = ET.SubElement(dump_section, 'div', {'class': 'section'})
        table = ET.SubElement(table_section, 'table', {'class': 'dump'})

        header = ET.SubElement(table, 'tr')
        for css_class, label in (('track', '#'), ('tick', 'Tick'), ('address', 'Address'),
                                 ('hex', 'Hex Dump'), ('note', 'Note')):
            ET.SubElement(header, 'th', {'class': css_class}).text = label

        for ev in log.events:
            row = ET.SubElement(table, 'tr', {'class': f"track{ev.track + 1} {ev.class_str}"})
            ET.SubElement(row, 'td', {'class': 'track'}).text = str(ev.track + 1)
            ET.SubElement(row, 'td', {'class': 'tick'}).text = str(ev.tick)
            ET.SubElement(row, 'td', {'class': 'address'}).text = f"${ev.addr:04X}"
            ET.SubElement(row, 'td', {'class': 'hex'}).text = ev.hex_dump(aram)
            ET.SubElement(row, 'td', {'class': 'note'}).text = ev.note

    if log.messages:
        ET.SubElement(page, 'h2').text = "Messages"
        message_list = ET.SubElement(page, 'ul', {'class': 'messages'})
        for text in log.messages:
            ET.SubElement(message_list, 'li').text = text

    ET.SubElement(page, 'p', {'class': 'result'}).text = trailer

    xml_str = ET.tostring(root, encoding='unicode')
    pretty = minidom.parseString(xml_str).toprettyxml(indent='  ')
    lines = [line for line in pretty.split('\n') if line.strip()]
    return '\n'.join(lines) + '\n'


def render_html_report(result: ConversionResult, aram: AramImage) -> str:
    """Generate an XHTML report of a conversion.

    Each event row carries 'trackN' and its class tags as CSS classes so the
    output can be filtered with a stylesheet.
    """
    return _render_html(result.log, _trailer(result), aram)


def _is_html(output_path: Path) -> bool:
    return output_path.suffix.lower() in ('.htm', '.html')


def write_report(result: ConversionResult, aram: AramImage, output_path):
    """Write a report; .htm/.html paths get XHTML, anything else text."""
    output_path = Path(output_path)
    if _is_html(output_path):
        text = render_html_report(result, aram)
    else:
        text = render_text_report(result, aram)
    output_path.write_text(text, encoding='utf-8')


def write_error_report(log: EventLog, error, output_path):
    """Write the report of a conversion that raised before producing a result.

    Only the information list and messages gathered so far are written; there
    is no event table.
    """
    output_path = Path(output_path)
    trailer = f"Conversion failed: {error}"
    if _is_html(output_path):
        text = _render_html(log, trailer, None)
    else:
        text = _render_text(log, trailer, None)
    output_path.write_text(text, encoding='utf-8')
