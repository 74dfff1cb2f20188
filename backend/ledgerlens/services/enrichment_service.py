# ledgerlens/services/enrichment_service.py

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ledgerlens.models.enrichment_log import EnrichmentLog
from ledgerlens.models.statement import Statement
from ledgerlens.models.transaction import Transaction
from ledgerlens.services.llm_client import GeminiClient, LLMResponseError, extract_json_object
from ledgerlens.services.transaction_service import get_transactions, update_transaction

logger = logging.getLogger(__name__)


PARSE_FAILURE_SUMMARY = "Failed to parse enrichment response"

# Fields the model may change on an existing row
ENRICHABLE_FIELDS = {"merchant", "category", "notes", "reference_id", "transaction_name", "type"}


def enrichment_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    """Scalar enrichable fields of one model row; nested values are dropped."""
    fields = {}
    for key, value in item.items():
        if key not in ENRICHABLE_FIELDS or isinstance(value, (dict, list)):
            continue
        if value is not None and not isinstance(value, str):
            value = str(value)
        fields[key] = value
    return fields


def serialize_transaction(tx: Transaction) -> Dict[str, Any]:
    """Plain-JSON view of a row for prompts."""
    return {
        "id": str(tx.id),
        "date": tx.date.isoformat(),
        "amount": float(tx.amount),
        "currency": tx.currency,
        "merchant": tx.merchant,
        "transaction_name": tx.transaction_name,
        "reference_id": tx.reference_id,
        "category": tx.category,
        "type": tx.type,
        "notes": tx.notes,
    }


def build_enrichment_prompt(
    transactions: List[Transaction],
    reference_names: List[str],
    remarks: Optional[str] = None,
) -> str:
    document_context = "\n\nReference Documents:\n"
    for index, name in enumerate(reference_names, start=1):
        document_context += f'- Image {index}: "{name}" document\n'

    existing = json.dumps([serialize_transaction(t) for t in transactions], indent=2)

    return f"""You are enriching existing transaction data with additional context from reference documents.

EXISTING TRANSACTIONS:
{existing}

{document_context}

ADDITIONAL CONTEXT:
{remarks or "None"}

TASK:
Review the reference documents and additional context. For each transaction that can be enriched with more details (e.g., matching receipts, invoices, or additional information), update the relevant fields (merchant, category, notes, reference_id, etc.).

Return a JSON object with:
{{
  "enriched_transactions": [array of ONLY the transactions that were updated, including their "id" field],
  "summary": "Brief summary of what was enriched (e.g., 'Matched 3 Grab receipts, added merchant details to 2 Tokopedia transactions')"
}}

If no transactions can be enriched, return:
{{
  "enriched_transactions": [],
  "summary": "No relevant data found in reference documents to enrich existing transactions."
}}"""


def parse_enrichment_response(text: str) -> Dict[str, Any]:
    """
    Parse the model's {"enriched_transactions", "summary"} object.

    An unparsable answer is not an error: it yields no updates and a fixed
    summary, which is still logged.
    """
    fallback = {"enriched_transactions": [], "summary": PARSE_FAILURE_SUMMARY}

    try:
        parsed = extract_json_object(text)
    except LLMResponseError as e:
        logger.warning(f"Could not parse JSON from enrichment response: {e}")
        return fallback

    if not isinstance(parsed, dict):
        return fallback

    enriched = parsed.get("enriched_transactions")
    if not isinstance(enriched, list):
        enriched = []

    summary = parsed.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = PARSE_FAILURE_SUMMARY if not enriched else f"Enriched {len(enriched)} transactions"

    return {"enriched_transactions": [e for e in enriched if isinstance(e, dict)], "summary": summary}


def enrich_statement(
    db: Session,
    statement: Statement,
    references: List[Dict[str, Any]],
    llm_client: GeminiClient,
    remarks: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Secondary LLM pass over a statement's stored transactions.

    Args:
        references: [{"name", "data" (base64), "mime_type"}] reference documents

    Updates are applied one row at a time and only to rows of this
    statement; ids the model invents are skipped. An EnrichmentLog row is
    appended with the summary.

    Returns:
        {"summary", "updated", "enriched_transactions"}
    """
    if not references:
        raise ValueError("Please upload at least one reference document")

    transactions = get_transactions(db, statement.id, statement.user_id)
    known_ids = {str(t.id) for t in transactions}

    prompt = build_enrichment_prompt(
        transactions,
        [ref.get("name") or f"Document {i}" for i, ref in enumerate(references, start=1)],
        remarks,
    )
    text = llm_client.generate_text(prompt, references)
    result = parse_enrichment_response(text)

    updated = 0
    for item in result["enriched_transactions"]:
        transaction_id = str(item.get("id", ""))
        if transaction_id not in known_ids:
            logger.info(f"Enrichment returned unknown transaction id {transaction_id!r}; skipped")
            continue

        fields = enrichment_fields(item)
        if not fields:
            continue

        matched = next(t for t in transactions if str(t.id) == transaction_id)
        try:
            update_transaction(db, matched.id, statement.user_id, fields)
        except ValueError as e:
            db.rollback()
            logger.warning(f"Enrichment update for {transaction_id} rejected: {e}")
            continue
        updated += 1

    save_enrichment_log(db, statement.id, result["summary"])

    logger.info(f"Enriched statement {statement.id}: {updated} rows updated")
    return {
        "summary": result["summary"],
        "updated": updated,
        "enriched_transactions": result["enriched_transactions"],
    }


def save_enrichment_log(db: Session, statement_id, summary: str) -> EnrichmentLog:
    log = EnrichmentLog(statement_id=statement_id, enrichment_summary=summary)
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def get_enrichment_logs(db: Session, statement_id) -> List[EnrichmentLog]:
    """Enrichment history, newest first."""
    return (
        db.query(EnrichmentLog)
        .filter(EnrichmentLog.statement_id == statement_id)
        .order_by(EnrichmentLog.created_at.desc())
        .all()
    )
