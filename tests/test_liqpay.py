import base64
import hashlib
import json
import unittest
from urllib.parse import parse_qs, urlparse

from storefront.domain.exceptions import ConfigurationError, ValidationError
from storefront.infrastructure import liqpay


class SignatureTests(unittest.TestCase):

    def test_signature_is_base64_sha1_of_key_data_key(self):
        data = liqpay.encode_data({"order_id": "AB-123", "status": "success"})
        expected = base64.b64encode(hashlib.sha1(f"priv{data}priv".encode()).digest()).decode()

        self.assertEqual(liqpay.make_signature("priv", data), expected)
        self.assertTrue(liqpay.verify_signature("priv", data, expected))

    def test_any_tampering_is_rejected(self):
        data = liqpay.encode_data({"order_id": "AB-123", "status": "success"})
        signature = liqpay.make_signature("priv", data)
        tampered = liqpay.encode_data({"order_id": "AB-124", "status": "success"})

        self.assertFalse(liqpay.verify_signature("priv", tampered, signature))
        self.assertFalse(liqpay.verify_signature("other", data, signature))
        self.assertFalse(liqpay.verify_signature("priv", data, signature[:-2] + "AA"))
        self.assertFalse(liqpay.verify_signature("priv", data, ""))

    def test_empty_private_key(self):
        with self.assertRaises(ConfigurationError):
            liqpay.make_signature("", "data")


class CodecTests(unittest.TestCase):

    def test_decode_reads_encoded_payload(self):
        payload = {"order_id": "AB-123", "description": "Замовлення AB-123", "amount": 10}
        self.assertEqual(liqpay.decode_data(liqpay.encode_data(payload)), payload)

    def test_decode_malformed(self):
        not_json = base64.b64encode(b"not json").decode()
        array = base64.b64encode(json.dumps([1, 2]).encode()).decode()
        for data in ("%%%", not_json, array):
            with self.subTest(data=data), self.assertRaises(ValidationError):
                liqpay.decode_data(data)

    def test_checkout_url_carries_data_and_signature(self):
        url = liqpay.checkout_url("https://www.liqpay.ua/api/3/checkout", "ZGF0YQ==", "c2ln+/=")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        self.assertEqual(parsed.path, "/api/3/checkout")
        self.assertEqual(query["data"], ["ZGF0YQ=="])
        self.assertEqual(query["signature"], ["c2ln+/="])
