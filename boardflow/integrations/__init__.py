"""boardflow.integrations: outbound gateway modules.

Every outbound HTTP call (automation webhooks and API calls) goes through a
gateway in this package, never via bare `requests` calls in services or
blueprints. Gateways apply an explicit timeout and return a structured
result instead of raising.
"""
