"""Shared fixtures: application, database, users and seeded portfolio companies."""

from datetime import datetime, timedelta, timezone

import pytest
from flask_jwt_extended import create_access_token

from credit_portfolio import create_app, db
from credit_portfolio.config import TestingConfig
from credit_portfolio.models import User, DocumentProcessingRequest


def build_extracted_data(state="Maharashtra", city="Mumbai", gst_status="Regular", epfo_status="Regular",
                         audit_type="Unqualified", ebitda_margin=18.5, current_ratio=1.6, debt_equity=0.8,
                         revenue=250000000, gstin="27AAACR5055K1Z7", director="Anita Desai"):
    """Extracted document data shaped like the processing pipeline output."""
    return {
        "about_company": {
            "registered_address": {"city": city, "state": state},
            "business_address": {"city": city, "state": state},
        },
        "gst_records": {
            "active_gstins": [{"gstin": gstin, "state": state, "compliance_status": gst_status}],
        },
        "epfo_records": {
            "establishments": [{"establishment_id": "MHBAN0012345000", "compliance_status": epfo_status}],
        },
        "audit_qualifications": [{"qualification_type": audit_type}],
        "directors": [{"name": director, "din": "00012345"}],
        "Standalone Financial Data": {
            "years": ["Mar-23", "Mar-24"],
            "profit_loss": {
                "revenue": {"Mar-23": revenue * 0.9, "Mar-24": revenue},
                "ebitda": {"Mar-23": revenue * 0.16, "Mar-24": revenue * ebitda_margin / 100},
                "pat": {"Mar-23": revenue * 0.06, "Mar-24": revenue * 0.07},
            },
            "balance_sheet": {"assets": {"total_assets": {"Mar-23": revenue * 1.1, "Mar-24": revenue * 1.2}}},
            "ratios": {
                "profitability": {"ebitda_margin": {"Mar-23": 16.0, "Mar-24": ebitda_margin}},
                "liquidity": {"current_ratio": {"Mar-23": 1.4, "Mar-24": current_ratio}},
                "leverage": {"debt_equity": {"Mar-23": 0.9, "Mar-24": debt_equity}},
            },
        },
    }


def build_risk_analysis(score=72.0, grade="CM2", final_eligibility=50000000, risk_multiplier=0.9):
    """Risk analysis payload with category results, parameter scores and eligibility."""
    financial_scores = [
        {"parameter": "Current Ratio", "score": 4, "maxScore": 5, "available": True, "category": "Financial"},
        {"parameter": "Debt to Equity Ratio", "score": 3, "maxScore": 5, "available": True,
         "category": "Financial"},
        {"parameter": "EBITDA Margin", "score": 5, "maxScore": 5, "available": True, "category": "Financial"},
    ]
    business_scores = [
        {"parameter": "Constitution of Entity", "score": 4, "maxScore": 5, "available": True,
         "category": "Business"},
    ]
    hygiene_scores = [
        {"parameter": "Statutory Payments (GST)", "score": 5, "maxScore": 5, "available": True,
         "category": "Hygiene"},
        {"parameter": "Statutory Payments (PF)", "score": 0, "maxScore": 5, "available": False,
         "category": "Hygiene"},
    ]
    return {
        "totalWeightedScore": score,
        "overallPercentage": score,
        "overallGrade": {"grade": grade, "category": 2, "multiplier": risk_multiplier},
        "financialResult": {"score": 12, "maxScore": 15, "percentage": score},
        "businessResult": {"score": 4, "maxScore": 5, "percentage": score - 5},
        "hygieneResult": {"score": 5, "maxScore": 10, "percentage": 50.0},
        "financialScores": financial_scores,
        "businessScores": business_scores,
        "hygieneScores": hygiene_scores,
        "allScores": financial_scores + business_scores + hygiene_scores,
        "eligibility": {
            "finalEligibility": final_eligibility,
            "riskMultiplier": risk_multiplier,
            "riskGrade": grade,
        },
    }


def make_company(user, **overrides):
    """Persist a completed portfolio company for ``user``."""
    completed_at = overrides.pop("completed_at", datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc))
    score = overrides.pop("risk_score", 72.0)
    grade = overrides.pop("risk_grade", "cm2")
    extracted = overrides.pop("extracted_data", None)
    analysis = overrides.pop("risk_analysis", None)

    reference = completed_at or datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)

    values = dict(
        user_id=user.id,
        company_name="Reliance Textiles Pvt Ltd",
        industry="Textiles",
        risk_score=score,
        risk_grade=grade,
        recommended_limit=50000000,
        status="completed",
        model_type="without_banking",
        total_parameters=10,
        available_parameters=8,
        financial_parameters=3,
        business_parameters=1,
        hygiene_parameters=2,
        banking_parameters=0,
        extracted_data=extracted if extracted is not None else build_extracted_data(),
        risk_analysis=analysis if analysis is not None else build_risk_analysis(score, grade.upper()),
        submitted_at=reference - timedelta(minutes=10),
        processing_started_at=reference - timedelta(minutes=8),
        completed_at=completed_at,
    )
    values.update(overrides)

    company = DocumentProcessingRequest(**values)
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def app():
    """Application with a fresh in-memory database."""
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(app):
    user = User(email="analyst@lender.in", first_name="Priya", last_name="Sharma", organization="Lender Ltd")
    user.set_password("S3cure-pass!")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def other_user(app):
    user = User(email="auditor@lender.in", first_name="Rahul", last_name="Iyer")
    user.set_password("An0ther-pass!")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_headers(user):
    token = create_access_token(identity=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def companies(user):
    """Three completed companies across industries, grades and states plus one failed request."""
    strong = make_company(
        user,
        company_name="Reliance Textiles Pvt Ltd",
        industry="Textiles",
        risk_score=82.0,
        risk_grade="cm1",
        recommended_limit=80000000,
        completed_at=datetime(2025, 6, 3, 9, 0, tzinfo=timezone.utc),
        extracted_data=build_extracted_data(ebitda_margin=22.0, current_ratio=2.1, debt_equity=0.4),
        risk_analysis=build_risk_analysis(82.0, "CM1", final_eligibility=80000000, risk_multiplier=1.0),
    )
    average = make_company(
        user,
        company_name="Kaveri Steel Industries",
        industry="Steel",
        risk_score=61.0,
        risk_grade="CM3",
        recommended_limit=30000000,
        completed_at=datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc),
        model_type="with_banking",
        extracted_data=build_extracted_data(state="Karnataka", city="Bengaluru", gst_status="Irregular",
                                            audit_type="Qualified", ebitda_margin=9.0, current_ratio=1.1,
                                            debt_equity=2.5, gstin="29AABCK1234M1Z5",
                                            director="Suresh Kumar"),
        risk_analysis=build_risk_analysis(61.0, "CM3", final_eligibility=25000000, risk_multiplier=0.7),
    )
    weak = make_company(
        user,
        company_name="Ganga Agro Foods",
        industry="Textiles",
        risk_score=28.0,
        risk_grade="cm4",
        recommended_limit=10000000,
        completed_at=datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc),
        extracted_data=build_extracted_data(state="Uttar Pradesh", city="Kanpur", ebitda_margin=4.0,
                                            current_ratio=0.8, debt_equity=4.2, gstin="09AAGCG7788Q1Z2",
                                            director="Meera Nair"),
        risk_analysis=build_risk_analysis(28.0, "CM4", final_eligibility=5000000, risk_multiplier=0.5),
    )
    failed = make_company(
        user,
        company_name="Pending Exports",
        industry="Exports",
        risk_score=None,
        risk_grade=None,
        recommended_limit=None,
        status="failed",
        error_message="TIMEOUT_ERROR: analysis exceeded time budget",
        completed_at=datetime(2025, 6, 4, 9, 0, tzinfo=timezone.utc),
        extracted_data={},
        risk_analysis={},
    )
    return {"strong": strong, "average": average, "weak": weak, "failed": failed}


@pytest.fixture
def company_payload():
    """Factory for company dictionaries shaped like ``DocumentProcessingRequest.to_dict()``."""
    counter = {'n': 0}

    def _payload(risk_score=72.0, risk_grade="cm2", **overrides):
        counter['n'] += 1
        extracted = overrides.pop("extracted_data", None)
        analysis = overrides.pop("risk_analysis", None)
        payload = {
            "id": f"company-{counter['n']}",
            "request_id": f"req_{counter['n']}",
            "company_name": f"Company {counter['n']}",
            "industry": "Textiles",
            "risk_score": risk_score,
            "risk_grade": risk_grade,
            "recommended_limit": 50000000,
            "status": "completed",
            "model_type": "without_banking",
            "total_parameters": 10,
            "available_parameters": 8,
            "financial_parameters": 3,
            "business_parameters": 1,
            "hygiene_parameters": 2,
            "banking_parameters": 0,
            "completed_at": "2025-06-01T10:00:00+00:00",
            "extracted_data": extracted if extracted is not None else build_extracted_data(),
            "risk_analysis": analysis if analysis is not None else build_risk_analysis(
                risk_score or 0, str(risk_grade).upper()),
        }
        payload["financial_data"] = payload["extracted_data"].get("Standalone Financial Data")
        payload.update(overrides)
        return payload

    return _payload
