"""PDF rendering for financial reports and invoices (reportlab platypus)."""
import io
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from coursepay.ledger.models import Invoice, Transaction

MAX_DAILY_ROWS = 20

_TABLE_STYLE = TableStyle([
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 9),
    ("LINEBELOW", (0, 0), (-1, 0), 0.75, colors.black),
    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f4f4f4")]),
    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
])


def format_money(value: float | int | None) -> str:
    return f"${value or 0:,.2f}"


def _document(buffer: io.BytesIO, title: str) -> SimpleDocTemplate:
    return SimpleDocTemplate(
        buffer, pagesize=A4, title=title,
        leftMargin=18 * mm, rightMargin=18 * mm, topMargin=18 * mm, bottomMargin=18 * mm,
    )


def _table(rows: list[list[str]], widths: list[float]) -> Table:
    table = Table(rows, colWidths=[w * mm for w in widths], hAlign="LEFT")
    table.setStyle(_TABLE_STYLE)
    return table


def render_financial_report(report: dict) -> bytes:
    styles = getSampleStyleSheet()
    buffer = io.BytesIO()
    filters = report["metadata"]["filters"]
    summary = report["summary"]

    story = [
        Paragraph("FINANCIAL REPORT", styles["Title"]),
        Paragraph(f"Report generated: {report['metadata']['generated_at']}", styles["Normal"]),
        Paragraph(f"Period: {filters['start_date']} to {filters['end_date']}", styles["Normal"]),
        Paragraph(f"Educator: {escape(filters['educator_id'])}", styles["Normal"]),
        Spacer(1, 6 * mm),
        Paragraph("SUMMARY", styles["Heading2"]),
        _table(
            [
                ["Metric", "Value"],
                ["Total revenue", format_money(summary["total_revenue"])],
                ["Total refunds", format_money(summary["total_refunds"])],
                ["Net revenue", format_money(summary["net_revenue"])],
                ["Platform commission", format_money(summary["total_commission"])],
                ["Educator earnings", format_money(summary["total_educator_earnings"])],
                ["Payments", str(summary["total_transactions"])],
                ["Refunds", str(summary["total_refund_count"])],
                ["Unique customers", str(summary["unique_customers"])],
            ],
            [80, 50],
        ),
    ]

    daily = report.get("daily_stats") or []
    if daily:
        story += [Spacer(1, 6 * mm), Paragraph("DAILY REVENUE", styles["Heading2"])]
        rows = [["Date", "Revenue", "Refunds", "Transactions"]]
        rows += [
            [d["date"], format_money(d["revenue"]), format_money(d["refunds"]), str(d["transactions"])]
            for d in daily[:MAX_DAILY_ROWS]
        ]
        story.append(_table(rows, [40, 40, 40, 30]))
        if len(daily) > MAX_DAILY_ROWS:
            story.append(Paragraph(f"(Showing first {MAX_DAILY_ROWS} days only)", styles["Italic"]))

    courses = report.get("top_courses") or []
    if courses:
        story += [Spacer(1, 6 * mm), Paragraph("TOP PERFORMING COURSES", styles["Heading2"])]
        rows = [["Course", "Revenue", "Sales"]]
        rows += [[c["course_id"], format_money(c["revenue"]), str(c["sales"])] for c in courses]
        story.append(_table(rows, [80, 40, 30]))

    story += [
        Spacer(1, 10 * mm),
        Paragraph("CONFIDENTIAL FINANCIAL INFORMATION", styles["Italic"]),
        Paragraph(f"Generated on {datetime.now(timezone.utc):%B %d, %Y}", styles["Italic"]),
    ]

    _document(buffer, "Financial report").build(story)
    return buffer.getvalue()


def render_invoice(invoice: Invoice, transaction: Transaction) -> bytes:
    styles = getSampleStyleSheet()
    buffer = io.BytesIO()
    billing = invoice.billing_info or {}
    currency = transaction.currency

    story = [
        Paragraph("INVOICE", styles["Title"]),
        Paragraph(f"Invoice number: {invoice.invoice_number}", styles["Normal"]),
        Paragraph(f"Issue date: {invoice.issue_date:%B %d, %Y}", styles["Normal"]),
        Paragraph(f"Status: {invoice.status.value}", styles["Normal"]),
        Spacer(1, 6 * mm),
        Paragraph("BILL TO", styles["Heading2"]),
        Paragraph(escape(billing.get("name") or transaction.user_id), styles["Normal"]),
        Paragraph(escape(billing.get("email") or ""), styles["Normal"]),
        Spacer(1, 6 * mm),
        _table(
            [
                ["Description", f"Amount ({currency})"],
                [transaction.description or f"Course {transaction.course_id}", f"{invoice.subtotal:,.2f}"],
                ["Discount", f"-{invoice.discount:,.2f}"],
                ["Tax", f"{invoice.tax:,.2f}"],
                ["Total", f"{invoice.total:,.2f}"],
            ],
            [100, 40],
        ),
    ]
    if invoice.paid_at:
        story.append(Paragraph(f"Paid on {invoice.paid_at:%B %d, %Y}", styles["Normal"]))
    if invoice.notes:
        story += [Spacer(1, 4 * mm), Paragraph(escape(invoice.notes).replace("\n", "<br/>"), styles["Normal"])]

    _document(buffer, f"Invoice {invoice.invoice_number}").build(story)
    return buffer.getvalue()
