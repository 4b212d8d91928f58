"""
Reliability and data-shaping layer between the Socrata API and the tools.

Modules:
- validation: parameter validation and SoQL escaping
- time_windows: standard query windows
- geo: borough / community district / NTA enrichment
- cache, retry, pagination, rate_limits, reliability: request reliability
- dedup, aggregation: de-duplication and derived metrics
- envelope, insights: response shape, trends and headlines
"""
