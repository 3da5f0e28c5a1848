"""
Blood pressure history reports and the notifier interface that delivers them.
"""

import base64
import binascii
import html
import re
from statistics import mean
from typing import Protocol

from bpcare.domain.errors import NotifierError
from bpcare.domain.models import AdviceReport, BPCategory, Reading, UserProfile
from bpcare.domain.result import Result

CHART_CID = "bp_chart"

_DATA_URL = re.compile(r"^data:image/png;base64,(?P<payload>[A-Za-z0-9+/=\s]+)$")

_CATEGORY_COLOURS = {
    BPCategory.NORMAL: "#28a745",
    BPCategory.ELEVATED: "#c9a400",
    BPCategory.STAGE_1: "#fd7e14",
    BPCategory.STAGE_2: "#dc3545",
    BPCategory.CRISIS: "#8b0000",
}


class Notifier(Protocol):
    """Fire-and-forget delivery of a report. Failures are returned, not raised."""

    async def send(
        self,
        destination: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
        image: bytes | None = None,
    ) -> Result[None, NotifierError]: ...


def decode_chart_image(data_url: str) -> bytes:
    """Decode a ``data:image/png;base64,...`` URL produced by a browser canvas."""
    match = _DATA_URL.match(data_url.strip())
    if not match:
        raise ValueError("Chart image must be a base64 PNG data URL")
    try:
        return base64.b64decode(match.group("payload"), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Chart image is not valid base64: {e}") from e


def build_report(
    user: UserProfile,
    readings: list[Reading],
    advice: str | None = None,
    chart_image: bytes | None = None,
) -> AdviceReport:
    """Summarise a user's readings as plain text and HTML."""
    readings = sorted(readings, key=lambda r: r.recorded_at)
    subject = f"Blood Pressure Report for {user.name}"

    text_lines = [f"Hello {user.name},", "", "Here is your blood pressure report.", ""]
    if not readings:
        text_lines.append("No readings recorded yet.")
    else:
        latest = readings[-1]
        avg_sys = mean(r.systolic for r in readings)
        avg_dia = mean(r.diastolic for r in readings)
        text_lines += [
            f"Readings: {len(readings)}",
            f"Latest: {latest.systolic}/{latest.diastolic} mmHg ({latest.category.value})",
            f"Average: {avg_sys:.0f}/{avg_dia:.0f} mmHg",
            f"Systolic range: {min(r.systolic for r in readings)}-"
            f"{max(r.systolic for r in readings)} mmHg",
            f"Diastolic range: {min(r.diastolic for r in readings)}-"
            f"{max(r.diastolic for r in readings)} mmHg",
            "",
            "History:",
        ]
        for r in readings:
            text_lines.append(
                f"  {r.recorded_at.strftime('%Y-%m-%d %H:%M')}  "
                f"{r.systolic}/{r.diastolic}  {r.category.value}"
            )

    if advice:
        text_lines += ["", "Latest advice:", advice]
    text_lines += ["", "This report is informational and is not a medical diagnosis."]

    return AdviceReport(
        subject=subject,
        body_text="\n".join(text_lines),
        body_html=_render_html(user, readings, advice, chart_image is not None),
        image=chart_image,
    )


def _render_html(
    user: UserProfile, readings: list[Reading], advice: str | None, has_chart: bool
) -> str:
    rows = []
    for r in readings:
        colour = _CATEGORY_COLOURS[r.category]
        rows.append(
            "<tr>"
            f"<td>{r.recorded_at.strftime('%Y-%m-%d %H:%M')}</td>"
            f"<td>{r.systolic}</td><td>{r.diastolic}</td>"
            f'<td style="color: {colour};">{r.category.value}</td>'
            "</tr>"
        )

    table = (
        '<table style="border-collapse: collapse; width: 100%;" border="1" cellpadding="5">'
        "<tr><th>Date</th><th>Systolic</th><th>Diastolic</th><th>Category</th></tr>"
        + "".join(rows)
        + "</table>"
        if rows
        else "<p>No readings recorded yet.</p>"
    )
    chart = (
        f'<p><img src="cid:{CHART_CID}" alt="Blood pressure trend" style="max-width: 100%;"></p>'
        if has_chart
        else ""
    )
    advice_block = (
        '<div style="background: #f5f5f5; padding: 15px; margin: 20px 0; border-radius: 5px;">'
        f"<strong>Latest advice</strong><p>{html.escape(advice)}</p></div>"
        if advice
        else ""
    )

    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #007bff;">Blood Pressure Report</h2>
        <p>Hello {html.escape(user.name)},</p>
        {chart}
        {table}
        {advice_block}
        <p style="color: #999; font-size: 12px;">
            This report is informational and is not a medical diagnosis.
        </p>
    </body>
    </html>
    """
