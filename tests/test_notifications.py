import smtplib
from unittest.mock import patch

import pytest
from django.core import mail

from core import services
from core.exceptions import NotFound
from core.notifications import send_delivery_otp


@pytest.fixture
def placed(make_item, make_line, buyer, identity):
    return services.place_order(identity(buyer), [make_line(make_item(name='Kettle')).id])[0]


@pytest.mark.django_db
class TestSendDeliveryOtp:

    def test_email_contains_code_for_buyer(self, placed, buyer):
        assert send_delivery_otp(placed.order, placed.otp) is True

        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == [buyer.email]
        assert f'#{placed.order.id}' in message.subject
        assert placed.otp in message.body
        assert 'Kettle' in message.body

    def test_disabled(self, placed, settings):
        settings.ORDER_OTP_EMAIL_ENABLED = False

        assert send_delivery_otp(placed.order, placed.otp) is False
        assert mail.outbox == []

    def test_mail_failure_is_logged_without_code(self, placed):
        with patch('core.notifications.send_mail', side_effect=smtplib.SMTPException('relay down')), \
                patch('core.notifications.logger') as logger:
            assert send_delivery_otp(placed.order, placed.otp) is False

        logger.error.assert_called_once()
        logged = logger.error.call_args[0][0]
        assert 'relay down' in logged
        assert placed.otp not in logged

    def test_not_sent_when_placement_rolls_back(
        self, make_item, make_line, buyer, identity, django_capture_on_commit_callbacks
    ):
        good = make_line(make_item(name='Good'))

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(NotFound):
                services.place_order(identity(buyer), [good.id, 9999])

        assert callbacks == []
        assert mail.outbox == []
