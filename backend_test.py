#!/usr/bin/env python3
"""Smoke test against a running Anchor API started with PAYMENT_TEST_MODE=true.

    ANCHOR_BASE_URL=http://localhost:8000/api python backend_test.py
"""

import os
import sys
import time
import uuid

import requests


class AnchorApiTester:
    def __init__(self, base_url=os.getenv("ANCHOR_BASE_URL", "http://localhost:8000/api")):
        self.base_url = base_url.rstrip("/")
        self.token = None
        self.tests_run = 0
        self.tests_passed = 0
        self.account_id = None
        self.checkout_ref = None
        self.email = f"smoke-{uuid.uuid4().hex[:8]}@anchor.test"
        self.password = "SmokePass123"

    def run_test(self, name, method, endpoint, expected_status, data=None, auth=True):
        """Run a single API test"""
        url = f"{self.base_url}/{endpoint}"
        headers = {'Content-Type': 'application/json'}
        if auth and self.token:
            headers['Authorization'] = f'Bearer {self.token}'

        self.tests_run += 1
        print(f"\n🔍 Testing {name}...")
        print(f"   URL: {url}")

        try:
            response = requests.request(method, url, json=data, headers=headers, timeout=30)
        except requests.exceptions.RequestException as e:
            print(f"❌ Failed - Error: {e}")
            return False, {}

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code == expected_status:
            self.tests_passed += 1
            print(f"✅ Passed - Status: {response.status_code}")
            return True, body

        print(f"❌ Failed - Expected {expected_status}, got {response.status_code}")
        print(f"   Error: {body or response.text}")
        return False, body

    def test_root_endpoint(self):
        success, _ = self.run_test("Root API Endpoint", "GET", "", 200)
        return success

    def test_signup(self):
        success, body = self.run_test(
            "Signup (premium plan)", "POST", "auth/signup", 200,
            data={"email": self.email, "password": self.password, "avatar": "panda", "plan": "premium"},
        )
        if success:
            self.token = body.get("token")
            self.account_id = body.get("account", {}).get("id")
            print(f"   Pay: {body.get('paymentDetails')}")
        return success and bool(self.token)

    def test_login_before_activation(self):
        success, body = self.run_test(
            "Login Before Activation", "POST", "auth/login", 403,
            data={"email": self.email, "password": self.password}, auth=False,
        )
        return success

    def test_init_payment(self):
        success, body = self.run_test(
            "Initiate Payment", "POST", "payments/init", 200,
            data={"phoneNumber": "0712345678", "purpose": "activation"},
        )
        if success:
            self.checkout_ref = body.get("checkoutRef")
            print(f"   Checkout: {self.checkout_ref}")
        return success and bool(self.checkout_ref)

    def test_callback(self):
        payload = {
            "Body": {"stkCallback": {
                "MerchantRequestID": "smoke",
                "CheckoutRequestID": self.checkout_ref,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {"Item": [
                    {"Name": "Amount", "Value": 300},
                    {"Name": "MpesaReceiptNumber", "Value": f"SMK{uuid.uuid4().hex[:7].upper()}"},
                ]},
            }}
        }
        ok = True
        # Deliver twice: the second one must be acknowledged and ignored
        for attempt in ("Provider Callback", "Duplicate Callback"):
            success, body = self.run_test(attempt, "POST", "payments/callback", 200, data=payload, auth=False)
            ok = ok and success and body.get("ResultCode") == 0
        return ok

    def test_poll_activation(self):
        deadline = time.time() + 15
        while time.time() < deadline:
            success, body = self.run_test(
                "Poll Activation Status", "GET", f"accounts/{self.account_id}/activation-status", 200, auth=False,
            )
            if success and body.get("isActive"):
                print(f"   Premium until: {body.get('premiumUntil')}")
                return body.get("isPremium") is True
            time.sleep(1)
        return False

    def test_login(self):
        success, body = self.run_test(
            "Login After Activation", "POST", "auth/login", 200,
            data={"email": self.email, "password": self.password}, auth=False,
        )
        if success:
            self.token = body.get("token")
        return success

    def test_session_me(self):
        success, body = self.run_test("Session Me", "GET", "session/me", 200)
        return success and body.get("isActive") is True

    def test_history(self):
        success, body = self.run_test("Payment History", "GET", "payments/history", 200)
        return success and [p.get("status") for p in body] == ["success"]

    def test_unknown_callback(self):
        success, body = self.run_test(
            "Unknown Callback", "POST", "payments/callback", 200,
            data={"correlationToken": "does-not-exist", "outcome": "success"}, auth=False,
        )
        return success

    def test_invalid_login(self):
        success, _ = self.run_test(
            "Invalid Login", "POST", "auth/login", 401,
            data={"email": self.email, "password": "wrong"}, auth=False,
        )
        return success


def main():
    print("🚀 Starting Anchor API Tests")
    print("=" * 50)

    tester = AnchorApiTester()

    tests = [
        ("Root Endpoint", tester.test_root_endpoint),
        ("Signup", tester.test_signup),
        ("Login Before Activation", tester.test_login_before_activation),
        ("Initiate Payment", tester.test_init_payment),
        ("Provider Callback", tester.test_callback),
        ("Poll Activation", tester.test_poll_activation),
        ("Login", tester.test_login),
        ("Session Me", tester.test_session_me),
        ("Payment History", tester.test_history),
        ("Unknown Callback", tester.test_unknown_callback),
        ("Invalid Login", tester.test_invalid_login),
    ]

    failed_tests = []

    for test_name, test_func in tests:
        if not test_func():
            failed_tests.append(test_name)

    print("\n" + "=" * 50)
    print("📊 TEST RESULTS")
    print("=" * 50)
    print(f"Tests run: {tester.tests_run}")
    print(f"Tests passed: {tester.tests_passed}")
    print(f"Tests failed: {len(failed_tests)}")

    if failed_tests:
        print(f"\n❌ Failed tests:")
        for test in failed_tests:
            print(f"   - {test}")
    else:
        print(f"\n✅ All tests passed!")

    return 0 if len(failed_tests) == 0 else 1

if __name__ == "__main__":
    sys.exit(main())
