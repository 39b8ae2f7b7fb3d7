"""
Integração com Temporal.

O EnrollmentTickWorkflow agenda um tick do execution loop a cada
TICK_INTERVAL_SECONDS. Quando TEMPORAL_ENABLED=false o mesmo tick roda
pelo scheduler local (dripflow.scheduler).
"""
