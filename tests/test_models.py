"""Tests for fusion/models.py dataclasses."""

import dataclasses

import pytest

from fusion.models import (
    CROSS_ANALYSIS,
    INITIAL,
    Citation,
    CredentialSet,
    Exchange,
    FactCheckReport,
    ModelResult,
    Phases,
    Synthesis,
)


def test_model_result_is_frozen():
    r = ModelResult(model="gpt-5.2", phase=INITIAL, content="Paris", status="success", tokens=5)
    with pytest.raises(dataclasses.FrozenInstanceError):
        r.content = "Lyon"  # type: ignore[misc]


def test_model_result_ok():
    assert ModelResult("m", INITIAL, "x", "success").ok is True
    assert ModelResult("m", INITIAL, "", "failed", error="boom").ok is False


def test_model_result_to_dict_initial():
    r = ModelResult(model="gpt-5.2", phase=INITIAL, content="Paris", status="success", tokens=5)
    assert r.to_dict() == {"slug": "gpt-5.2", "content": "Paris", "status": "success", "tokens": 5}


def test_model_result_to_dict_failed_cross():
    r = ModelResult(
        model="grok-4-2",
        phase=CROSS_ANALYSIS,
        content="",
        status="failed",
        error="timeout",
        analyzed_by=("gpt-5.2", "claude-opus-4.6"),
    )
    data = r.to_dict()
    assert data["error"] == "timeout"
    assert data["analyzedBy"] == ["gpt-5.2", "claude-opus-4.6"]


def test_exchange_to_dict():
    assert Exchange("gpt-5.2", "claude-opus-4.6").to_dict() == {
        "from": "gpt-5.2",
        "to": "claude-opus-4.6",
        "type": "analysis",
    }


def test_synthesis_to_dict_with_report():
    s = Synthesis(master_model="gpt-5.2", content="x", tokens=3, fact_check_report=FactCheckReport(4, 75, 1))
    assert s.to_dict() == {
        "masterSlug": "gpt-5.2",
        "content": "x",
        "tokens": 3,
        "fact_check_report": {"verified_claims": 4, "consensus_percentage": 75, "contradictions_found": 1},
    }


def test_synthesis_to_dict_without_report():
    assert "fact_check_report" not in Synthesis(master_model="m", content="x").to_dict()


def test_phases_to_dict_empty():
    assert Phases().to_dict() == {"initial": [], "crossAnalysis": [], "refinement": [], "synthesis": None}


def test_phases_all_results_order():
    a = ModelResult("a", INITIAL, "1", "success")
    b = ModelResult("b", CROSS_ANALYSIS, "2", "success")
    assert Phases(initial=[a], cross_analysis=[b]).all_results() == [a, b]


def test_citation_to_dict():
    c = Citation(index=1, title="T", url="https://t.test")
    assert c.to_dict() == {"index": 1, "title": "T", "url": "https://t.test", "snippet": "", "date": None}


def test_credential_set_get():
    creds = CredentialSet(openai="o", grok="g")
    assert creds.get("openai") == "o"
    assert creds.get("grok") == "g"
    assert creds.get("anthropic") is None
    assert creds.get("deepseek") is None


def test_credential_set_merged_ignores_empty_and_unknown():
    creds = CredentialSet(openai="default", google="g")
    merged = creds.merged({"openai": "mine", "google": "", "anthropic": None, "deepseek": "x"})
    assert merged.openai == "mine"
    assert merged.google == "g"
    assert merged.anthropic is None
    assert creds.openai == "default"


def test_credential_set_available():
    assert CredentialSet(openai="o", serper="s").available() == {"openai", "serper"}
