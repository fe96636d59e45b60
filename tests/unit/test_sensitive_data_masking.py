import pytest

pytestmark = pytest.mark.unit


class TestSensitiveDataMasking:
    def test_msisdn_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "detail": "payer 01712345678 paid"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "01712345678" not in result["detail"]
        assert "***MASKED***" in result["detail"]

    def test_msisdn_with_country_code_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "detail": "wallet +8801812345678"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "1812345678" not in result["detail"]

    def test_customer_msisdn_key_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "bkash.executed", "customer_msisdn": "01912345678"}
        result = mask_sensitive_data(None, None, event_dict)
        assert result["customer_msisdn"] == "***MASKED***"

    def test_credential_keys_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {
            "event": "test",
            "app_secret": "very-secret",
            "id_token": "eyJhbGciOi",
            "password": "hunter2",
        }
        result = mask_sensitive_data(None, None, event_dict)
        assert result["app_secret"] == "***MASKED***"
        assert result["id_token"] == "***MASKED***"
        assert result["password"] == "***MASKED***"

    def test_password_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "data": "password='s3cret123'"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "s3cret123" not in result["data"]
        assert "***MASKED***" in result["data"]

    def test_token_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "header": "token=abc123xyz"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "abc123xyz" not in result["header"]
        assert "***MASKED***" in result["header"]

    def test_non_sensitive_data_unchanged(self):
        from config.settings import mask_sensitive_data

        event_dict = {
            "event": "payment.paid",
            "order_number": "ORD-20260110-A1B2C3",
            "trx_id": "TRX9A8B7C6D",
            "amount": "5620.00",
        }
        result = mask_sensitive_data(None, None, event_dict)
        assert result["order_number"] == "ORD-20260110-A1B2C3"
        assert result["trx_id"] == "TRX9A8B7C6D"
        assert result["amount"] == "5620.00"
        assert result["event"] == "payment.paid"
