# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - documents.py: Document store (lifecycle transitions) and upload service
#   - extractor.py: Plain-text decoding and PDF extraction with Docling
#   - llm.py: AI client (summaries with retry, streamed answers)
#   - streaming.py: Answer chunks → server-sent events under a deadline
#   - rate_limiter.py: Per-client sliding window
#   - metrics.py: Per-route request counters
# =============================================================================
