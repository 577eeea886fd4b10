"""Refusal classifier tests."""

from fallback_router.models import NormalizedResponse, Verdict
from fallback_router.refusal import RefusalClassifier, load_signatures


def _r(text: str) -> NormalizedResponse:
    return NormalizedResponse(text=text)


def test_default_signatures_catch_common_refusal():
    c = RefusalClassifier()
    assert c.classify(_r("I'm sorry, but I can't help with that.")) is Verdict.REFUSED
    assert c.classify(_r("As an AI language model, I have no opinion.")) is Verdict.REFUSED


def test_match_is_case_insensitive_and_whitespace_tolerant():
    c = RefusalClassifier(["i cannot help with"])
    assert c.classify(_r("I   CANNOT\nhelp with this")) is Verdict.REFUSED


def test_curly_apostrophe_normalized():
    c = RefusalClassifier()
    assert c.classify(_r("I’m unable to do that.")) is Verdict.REFUSED


def test_normal_answer_accepted():
    c = RefusalClassifier()
    assert c.classify(_r("Paris is the capital of France.")) is Verdict.ACCEPTED


def test_hedged_answer_not_a_refusal_by_default():
    c = RefusalClassifier()
    assert c.classify(_r("I cannot guarantee this, but the answer is 42.")) is Verdict.ACCEPTED


def test_empty_text_is_refused():
    c = RefusalClassifier()
    assert c.classify(_r("")) is Verdict.REFUSED
    assert c.classify(_r("  \n")) is Verdict.REFUSED


def test_classify_is_idempotent():
    c = RefusalClassifier()
    resp = _r("I cannot provide medical advice.")
    assert c.classify(resp) is c.classify(resp) is Verdict.REFUSED


def test_custom_and_extended_signatures():
    c = RefusalClassifier(["nope"])
    assert c.classify(_r("Nope, not today")) is Verdict.REFUSED
    assert c.classify(_r("I'm unable to")) is Verdict.ACCEPTED

    wider = c.extended(["declined"])
    assert wider.classify(_r("Request declined.")) is Verdict.REFUSED
    assert c.classify(_r("Request declined.")) is Verdict.ACCEPTED


def test_match_returns_signature():
    c = RefusalClassifier(["policy violation"])
    assert c.match(_r("That is a Policy Violation.")) == "policy violation"
    assert c.match(_r("fine")) is None


def test_load_signatures_skips_comments(tmp_path):
    path = tmp_path / "signatures.txt"
    path.write_text("# refusal phrases\n\nI must decline\n  not permitted  \n", encoding="utf-8")
    sigs = load_signatures(path)
    assert sigs == ("I must decline", "not permitted")
    c = RefusalClassifier(sigs)
    assert c.classify(_r("Sorry, I must decline.")) is Verdict.REFUSED
