from __future__ import annotations
from atsqueue.utils.hash import clean_external_id, job_content_hash, job_doc_id


def test_doc_id_uses_sanitized_external_id():
    assert job_doc_id("workday", "/job/NY/Engineer_R123", "t", "c", "u") == "workday__job_NY_Engineer_R123"
    assert len(clean_external_id("x" * 500)) == 200


def test_doc_id_falls_back_to_stable_content_hash():
    a = job_doc_id("lever", None, "Senior Engineer", "Acme", "https://x.com/job/1")
    b = job_doc_id("lever", "", " Senior Engineer ", "Acme", "https://x.com/job/1 ")
    c = job_doc_id("lever", None, "Senior Engineer", "Acme", "https://x.com/job/2")

    assert a == b
    assert a != c
    assert a == f"lever_{job_content_hash('Senior Engineer', 'Acme', 'https://x.com/job/1')}"
