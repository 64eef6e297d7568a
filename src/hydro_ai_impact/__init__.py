"""
Hydro AI Impact: Streamflow Intelligence Engine
===============================================

Deterministic analytics over USGS daily streamflow, plus a unit-conversion
pipeline that expresses an hour of river flow as data center energy and
compute equivalents.

Modules:
    connectors  - Data source connectors (USGS, Drought Monitor, narrative LLM)
    transforms  - Intelligence engine (moving averages, volatility, anomalies, score)
    models      - AI-impact converter (flow -> water -> kWh -> operations)
    ontology    - Value objects exchanged between the layers
    history     - Append-only snapshot store
    pipeline    - Per-station orchestration of fetch, analysis and history
    settings    - Environment/YAML configuration
    utils       - Shared utilities
"""

__version__ = "1.0.0"
__author__ = "EOX Vantage"
