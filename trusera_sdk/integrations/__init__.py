from trusera_sdk.integrations.langchain import TruseraCallbackHandler

__all__ = ["TruseraCallbackHandler"]
