"""
Тесты HTTP API
"""
from decimal import Decimal

import pytest

SHIFT = {
    "check_in": "2024-10-01T07:00:00",
    "check_out": "2024-10-01T19:00:00",
    "cash_income": 1000,
    "card_income": 500,
}


@pytest.fixture
def client(api_client):
    return api_client[0]


@pytest.fixture
def seeded(api_client):
    return api_client[1]


def create_shift(client, headers, seeded):
    response = client.post(
        f"/api/clubs/{seeded['club_id']}/shifts",
        json={**SHIFT, "user_id": seeded['employee_id']},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()['data']


class TestAuth:

    def test_health_is_public(self, client):
        assert client.get("/health").json()['status'] == 'ok'

    def test_wrong_key(self, client, seeded):
        response = client.get("/api/shifts/1", headers={"X-API-Key": "wrong"})
        assert response.status_code == 401

    def test_missing_key(self, client):
        response = client.get("/api/shifts/1")
        assert response.status_code == 422


class TestShiftRoutes:

    def test_create_and_get(self, client, api_headers, seeded):
        shift = create_shift(client, api_headers, seeded)
        assert shift['status'] == 'CLOSED'
        assert shift['total_hours'] == '12.00'
        assert shift['calculated_salary'] == '2445.00'

        response = client.get(f"/api/shifts/{shift['id']}", headers=api_headers)
        assert response.json()['data']['id'] == shift['id']

    def test_missing_shift(self, client, api_headers):
        response = client.get("/api/shifts/9999", headers=api_headers)
        assert response.status_code == 404
        assert response.json()['status'] == 'error'

    def test_create_without_check_out(self, client, api_headers, seeded):
        response = client.post(
            f"/api/clubs/{seeded['club_id']}/shifts",
            json={"user_id": seeded['employee_id'], "check_in": SHIFT['check_in']},
            headers=api_headers,
        )
        assert response.status_code == 400

    def test_check_in_and_out(self, client, api_headers, seeded):
        response = client.post(
            f"/api/clubs/{seeded['club_id']}/shifts/check-in",
            json={"user_id": seeded['employee_id']},
            headers=api_headers,
        )
        shift = response.json()['data']
        assert shift['status'] == 'ACTIVE'

        response = client.post(
            f"/api/shifts/{shift['id']}/check-out",
            json={"cash_income": 300},
            headers=api_headers,
        )
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'CLOSED'
        assert Decimal(response.json()['data']['cash_income']) == Decimal('300')

    def test_verify_once(self, client, api_headers, seeded):
        """Повторное подтверждение дает 409"""
        shift = create_shift(client, api_headers, seeded)
        url = f"/api/shifts/{shift['id']}/verify"

        response = client.post(url, json={"verified_by": seeded['owner_id']}, headers=api_headers)
        assert response.status_code == 200
        assert len(response.json()['data']['transactions_created']) == 2

        response = client.post(url, json={"verified_by": seeded['owner_id']}, headers=api_headers)
        assert response.status_code == 409

    def test_patch_verified_income(self, client, api_headers, seeded):
        shift = create_shift(client, api_headers, seeded)
        client.post(f"/api/shifts/{shift['id']}/verify", json={}, headers=api_headers)

        response = client.patch(f"/api/shifts/{shift['id']}", json={"cash_income": 5000}, headers=api_headers)
        assert response.status_code == 400

    def test_status_backward(self, client, api_headers, seeded):
        shift = create_shift(client, api_headers, seeded)
        client.post(f"/api/shifts/{shift['id']}/verify", json={}, headers=api_headers)

        response = client.post(
            f"/api/shifts/{shift['id']}/status", json={"status": "CLOSED"}, headers=api_headers
        )
        assert response.status_code == 409

    def test_delete_reports_orphans(self, client, api_headers, seeded):
        shift = create_shift(client, api_headers, seeded)
        client.post(f"/api/shifts/{shift['id']}/verify", json={}, headers=api_headers)

        response = client.delete(f"/api/shifts/{shift['id']}", headers=api_headers)
        assert response.json()['data']['orphaned_transactions'] == 2


class TestBatchRoutes:

    def test_batch(self, client, api_headers, seeded):
        rows = [
            {"employee_name": "Иванов Иван Иванович", "check_in": f"0{day}.10.2024 10:00",
             "check_out": f"0{day}.10.2024 22:00", "cash_income": 1000}
            for day in range(1, 6)
        ]
        rows[2]['employee_name'] = None
        response = client.post(
            f"/api/clubs/{seeded['club_id']}/shifts/batch", json={"rows": rows}, headers=api_headers
        )
        data = response.json()['data']
        assert data['imported'] == 4
        assert data['failed'] == 1
        assert data['errors'][0]['index'] == 2

    def test_excel_template(self, client, api_headers):
        response = client.get("/api/shifts/import-template", headers=api_headers)
        assert response.status_code == 200
        assert response.headers['content-type'].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )

    def test_excel_batch(self, client, api_headers, seeded):
        template = client.get("/api/shifts/import-template", headers=api_headers).content
        response = client.post(
            f"/api/clubs/{seeded['club_id']}/shifts/batch/excel", content=template, headers=api_headers
        )
        assert response.json()['data']['imported'] == 1


class TestSalaryRoutes:

    def test_evaluate(self, client, api_headers):
        response = client.post("/api/salary/evaluate", json={
            "shift": {"total_hours": 12},
            "formula": [{"kind": "HOURLY", "rate": 200}],
        }, headers=api_headers)
        assert response.json()['data']['total'] == '2400.00'

    def test_evaluate_null_hours(self, client, api_headers):
        """Пустые часы смены не дают 500"""
        response = client.post("/api/salary/evaluate", json={
            "shift": {"id": 1, "total_hours": None, "report_data": None},
            "formula": [{"kind": "HOURLY", "rate": 200}],
        }, headers=api_headers)
        assert response.status_code == 200
        assert response.json()['data']['total'] == '0.00'

    def test_evaluate_malformed_shift(self, client, api_headers):
        response = client.post("/api/salary/evaluate", json={
            "shift": {"report_data": "отчет"},
            "formula": [{"kind": "HOURLY", "rate": 200}],
        }, headers=api_headers)
        assert response.status_code == 400

    def test_evaluate_bad_formula(self, client, api_headers):
        response = client.post("/api/salary/evaluate", json={"formula": []}, headers=api_headers)
        assert response.status_code == 422

    def test_schemes(self, client, api_headers, seeded):
        response = client.post(f"/api/clubs/{seeded['club_id']}/schemes", json={
            "name": "Кассир", "formula": [{"kind": "FLAT_PER_SHIFT", "amount": 2000}],
        }, headers=api_headers)
        scheme_id = response.json()['data']['scheme_id']

        response = client.post(
            f"/api/schemes/{scheme_id}/versions",
            json={"formula": [{"kind": "FLAT_PER_SHIFT", "amount": 2200}]},
            headers=api_headers,
        )
        assert response.json()['data']['version'] == 2

        versions = client.get(f"/api/schemes/{scheme_id}/versions", headers=api_headers).json()['data']
        assert [v['version'] for v in versions] == [1, 2]

        response = client.post(
            f"/api/clubs/{seeded['club_id']}/assignments",
            json={"user_id": seeded['owner_id'], "scheme_id": scheme_id},
            headers=api_headers,
        )
        assert response.status_code == 200

    def test_summary_and_kpi(self, client, api_headers, seeded):
        create_shift(client, api_headers, seeded)
        params = {"user_id": seeded['employee_id'], "year": 2024, "month": 10}

        summary = client.get(
            f"/api/clubs/{seeded['club_id']}/salaries/summary", params=params, headers=api_headers
        ).json()['data']
        assert summary['shifts_count'] == 1
        assert summary['accrued_salary'] == '2445.00'

        kpi = client.get(
            f"/api/clubs/{seeded['club_id']}/employees/{seeded['employee_id']}/kpi",
            params={"year": 2024, "month": 10}, headers=api_headers
        ).json()['data']
        assert kpi['shifts_count'] == 1


class TestFinanceRoutes:

    def test_preview_then_import(self, client, api_headers, seeded):
        create_shift(client, api_headers, seeded)
        url = f"/api/clubs/{seeded['club_id']}/finance/import/generate"
        body = {"start_date": "2024-10-01", "end_date": "2024-10-31", "preview": True}

        preview = client.post(url, json=body, headers=api_headers).json()['data']
        assert preview['transactions_created'] == 2
        assert preview['totals'] == {"cash_income": "1000.00", "card_income": "500.00"}

        done = client.post(url, json={**body, "preview": False}, headers=api_headers).json()['data']
        assert done['transactions_created'] == 2

        again = client.post(url, json={**body, "preview": False}, headers=api_headers).json()['data']
        assert again['skipped'] == 1
