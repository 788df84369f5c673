"""
__init__.py
-----------
ConsultPad — Clinical Consultation Composer — LangGraph submission package
--------------------------------------------------------------------------
Exposes the LangGraph state machine that validates, composes and submits one
consultation as a single FHIR transaction bundle, and the orchestrator that
guards it against concurrent submissions.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""
