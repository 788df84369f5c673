"""
tests/
------
ConsultPad — Clinical Consultation Composer — Test Package
----------------------------------------------------------
Test suites for the consultation submission composer.

Test Modules:
    - test_medication_calculator.py: Total Quantity Rule and drug-form defaults
    - test_stores.py: category stores and their validators
    - test_fhir_mapper.py: FHIR resource mappers
    - test_consultation_bundle.py: reference resolution and bundle assembly
    - test_fhir_client.py: async FHIR client over httpx.MockTransport
    - test_encounter_session.py: active encounter lookup
    - test_audit_log.py: audit event dispatch
    - test_consultation_graph.py: submission workflow and orchestrator

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""
