import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, List
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for transactional emails over SMTP."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "MilkCart",
        use_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.use_tls = use_tls

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Failures are logged and reported as False; a mail outage never
        fails the request that triggered the email.
        """
        if not self.is_configured:
            logger.warning(f"Email not configured, skipping '{subject}' to {to_email}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP Authentication failed. Check email credentials.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False
        except TimeoutError:
            logger.error("SMTP connection timed out")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {e}")
            return False

    # ==================== ACCOUNT EMAILS ====================

    def send_verification_code_email(
        self,
        to_email: str,
        user_name: str,
        code: str,
        expires_minutes: int,
    ) -> bool:
        subject = f"Your MilkCart verification code: {code}"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background: #2f855a; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0;">
                <h1 style="margin: 0;">MilkCart</h1>
            </div>
            <div style="background: #f9f9f9; padding: 30px;">
                <p>Hello {user_name},</p>
                <p>Use this code to verify your email address:</p>
                <p style="font-size: 32px; letter-spacing: 8px; text-align: center; font-weight: bold;">{code}</p>
                <p>The code expires in <strong>{expires_minutes} minutes</strong>.</p>
                <p>If you did not create a MilkCart account, you can ignore this email.</p>
            </div>
        </body>
        </html>
        """

        text_content = (
            f"Hello {user_name},\n\n"
            f"Your MilkCart verification code is {code}.\n"
            f"It expires in {expires_minutes} minutes.\n"
        )

        return self.send_email(to_email, subject, html_content, text_content)

    # ==================== ORDER NOTIFICATIONS ====================

    def send_order_placed_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str,
        total_amount: Decimal,
        items: List[Dict],
        delivery_date: str,
        delivery_shift: str,
        time_slot: str,
    ) -> bool:
        """Order receipt with items and the booked delivery slot."""
        subject = f"Order Placed - {order_number} | MilkCart"

        items_html = ""
        for item in items:
            items_html += f"""
            <tr>
                <td style="padding: 8px; border-bottom: 1px solid #eee;">{item.get('product_name', 'Product')}</td>
                <td style="padding: 8px; border-bottom: 1px solid #eee; text-align: center;">{item.get('quantity', 1)}</td>
                <td style="padding: 8px; border-bottom: 1px solid #eee; text-align: right;">&#8377;{float(item.get('line_total', 0)):,.2f}</td>
            </tr>
            """

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #2f855a;">Thank you for your order, {customer_name}!</h2>
            <p>Order <strong>#{order_number}</strong> will be delivered on
               <strong>{delivery_date}</strong> ({delivery_shift}, {time_slot}).</p>
            <table style="width: 100%; border-collapse: collapse;">
                <thead>
                    <tr style="background: #edf2f7;">
                        <th style="padding: 8px; text-align: left;">Item</th>
                        <th style="padding: 8px;">Qty</th>
                        <th style="padding: 8px; text-align: right;">Amount</th>
                    </tr>
                </thead>
                <tbody>{items_html}</tbody>
                <tfoot>
                    <tr>
                        <td colspan="2" style="padding: 8px; font-weight: bold;">Total</td>
                        <td style="padding: 8px; text-align: right; font-weight: bold;">&#8377;{float(total_amount):,.2f}</td>
                    </tr>
                </tfoot>
            </table>
        </body>
        </html>
        """

        text_content = (
            f"Hi {customer_name},\n\n"
            f"Order #{order_number} will be delivered on {delivery_date} ({delivery_shift}, {time_slot}).\n"
            f"Total: Rs. {float(total_amount):,.2f}\n"
        )

        return self.send_email(to_email, subject, html_content, text_content)

    def send_order_status_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str,
        status: str,
        reason: Optional[str] = None,
    ) -> bool:
        """Confirmation, delivery and cancellation notices."""
        headlines = {
            "confirmed": "Your order is confirmed",
            "delivered": "Your order has been delivered",
            "cancelled": "Your order has been cancelled",
        }
        headline = headlines.get(status, f"Your order is now {status}")
        subject = f"{headline} - {order_number} | MilkCart"

        reason_html = f"<p>Reason: {reason}</p>" if reason else ""
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #2f855a;">{headline}</h2>
            <p>Hi {customer_name},</p>
            <p>Order <strong>#{order_number}</strong> is now <strong>{status}</strong>.</p>
            {reason_html}
        </body>
        </html>
        """

        text_content = f"Hi {customer_name},\n\nOrder #{order_number} is now {status}.\n"
        if reason:
            text_content += f"Reason: {reason}\n"

        return self.send_email(to_email, subject, html_content, text_content)

    def send_payment_verified_email(
        self,
        to_email: str,
        customer_name: str,
        payment_id: str,
        amount: Decimal,
        approved: bool,
        notes: Optional[str] = None,
    ) -> bool:
        outcome = "verified" if approved else "rejected"
        subject = f"Payment {outcome} - {payment_id} | MilkCart"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <p>Hi {customer_name},</p>
            <p>Your UPI payment <strong>{payment_id}</strong> of
               <strong>&#8377;{float(amount):,.2f}</strong> was <strong>{outcome}</strong>.</p>
            {f"<p>{notes}</p>" if notes else ""}
        </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)


def get_email_service() -> EmailService:
    """Get configured email service instance."""
    from milkcart.config import settings

    return EmailService(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        use_tls=settings.SMTP_USE_TLS,
    )
