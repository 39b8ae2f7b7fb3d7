"""
Services - Store, collaborators and administrative operations used by the engine.
"""

# flow_engine imports enrollment_store, which imports flow_engine submodules;
# load the engine package first so either module can be imported on its own.
import dripflow.flow_engine  # noqa: F401,E402
