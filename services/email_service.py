"""SMTP email notifications (HTML bodies, Vietnamese copy)."""

from __future__ import annotations

import smtplib
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Dict, Iterable, Mapping

from common.services.logging import log_event
from config import MailConfig


STORE_NAME = "Fashion Store"


def format_vnd(amount: Any) -> str:
    return f"{float(amount or 0):,.0f}₫".replace(",", ".")


def render_placeholders(template: str, context: Mapping[str, Any]) -> str:
    out = template or ""
    for key, value in context.items():
        out = out.replace("{{" + key + "}}", str(value))
    return out


def _layout(title: str, body: str) -> str:
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px;margin:auto\">"
        f"<h2 style=\"color:#111\">{title}</h2>{body}"
        f"<p style=\"color:#888;font-size:12px\">{STORE_NAME}</p></div>"
    )


class EmailService:
    """Best-effort mailer: failures are logged and reported as ``False``."""

    def __init__(self, config: MailConfig, base_url: str = "", *, timeout: float = 10.0) -> None:
        self._config = config
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def send_email(self, to: str, subject: str, html: str) -> bool:
        if not self._config.enabled:
            log_event("warning", "email.skipped", to=to, subject=subject, reason="smtp not configured")
            return False
        msg = MIMEText(html, "html", "utf-8")
        msg["Subject"] = subject
        msg["From"] = formataddr((STORE_NAME, self._config.sender or self._config.user))
        msg["To"] = to
        try:
            with smtplib.SMTP(self._config.host, self._config.port, timeout=self._timeout) as server:
                server.starttls()
                server.login(self._config.user, self._config.password)
                server.sendmail(self._config.sender or self._config.user, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            log_event("error", "email.failed", to=to, subject=subject, error=str(exc))
            return False
        log_event("info", "email.sent", to=to, subject=subject)
        return True

    def send_welcome(self, email: str, full_name: str) -> bool:
        body = (
            f"<p>Xin chào {full_name},</p>"
            "<p>Cảm ơn bạn đã đăng ký tài khoản. Chúc bạn mua sắm vui vẻ!</p>"
            f"<p><a href=\"{self._base_url}/products\">Khám phá sản phẩm</a></p>"
        )
        return self.send_email(email, f"Chào mừng đến với {STORE_NAME}", _layout("Chào mừng bạn!", body))

    def send_verification_code(self, email: str, full_name: str, code: str) -> bool:
        body = (
            f"<p>Xin chào {full_name},</p>"
            f"<p>Mã xác thực email của bạn là: <b style=\"font-size:22px\">{code}</b></p>"
            "<p>Mã có hiệu lực trong 10 phút.</p>"
        )
        return self.send_email(email, "Mã xác thực email", _layout("Xác thực email", body))

    def send_password_reset_code(self, email: str, full_name: str, code: str) -> bool:
        body = (
            f"<p>Xin chào {full_name},</p>"
            f"<p>Mã đặt lại mật khẩu của bạn là: <b style=\"font-size:22px\">{code}</b></p>"
            "<p>Mã có hiệu lực trong 10 phút. Nếu bạn không yêu cầu, hãy bỏ qua email này.</p>"
        )
        return self.send_email(email, "Đặt lại mật khẩu", _layout("Đặt lại mật khẩu", body))

    def send_order_confirmation(self, email: str, full_name: str, order: Mapping[str, Any]) -> bool:
        rows = "".join(
            f"<tr><td>{it['product_name']}</td><td align=\"center\">{it['quantity']}</td>"
            f"<td align=\"right\">{format_vnd(it['subtotal'])}</td></tr>"
            for it in order.get("items", [])
        )
        body = (
            f"<p>Xin chào {full_name},</p>"
            f"<p>Đơn hàng <b>{order['order_code']}</b> đã được tiếp nhận.</p>"
            f"<table width=\"100%\" cellpadding=\"4\">{rows}</table>"
            f"<p>Tạm tính: {format_vnd(order['total_amount'])}<br>"
            f"Phí vận chuyển: {format_vnd(order['shipping_fee'])}<br>"
            f"Giảm giá: -{format_vnd(order['discount_amount'])}<br>"
            f"<b>Tổng cộng: {format_vnd(order['final_amount'])}</b></p>"
            f"<p>Giao đến: {order.get('shipping_name')} - {order.get('shipping_phone')}<br>"
            f"{order.get('shipping_address')}</p>"
            f"<p><a href=\"{self._base_url}/orders/{order['order_code']}/confirmation\">Xem đơn hàng</a></p>"
        )
        return self.send_email(email, f"Xác nhận đơn hàng {order['order_code']}", _layout("Cảm ơn bạn đã đặt hàng!", body))

    def send_marketing(self, recipients: Iterable[Mapping[str, Any]], subject: str, html_template: str) -> Dict[str, int]:
        """Send one campaign; ``{{name}}`` in the template becomes each recipient's name."""
        total = 0
        success = 0
        for user in recipients:
            total += 1
            html = render_placeholders(html_template, {"name": user.get("full_name") or ""})
            if self.send_email(user["email"], subject, html):
                success += 1
        log_event("info", "email.campaign_sent", subject=subject, total=total, success=success)
        return {"total": total, "success": success}
