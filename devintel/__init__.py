"""
DevIntel

Hybrid retrieval over developer content with cited answers.

Philosophy:
- Two independent retrieval branches (vector, lexical), one combined list
- Answers are grounded only in retrieved chunks and cite them inline
- Optional enrichments degrade to safe defaults; hard dependencies fail loudly

Usage:
    from devintel.common import load_config
    from devintel.retriever import HybridSearchPipeline, RequestContext

    pipeline = HybridSearchPipeline.from_config(load_config())
    response = await pipeline.search("latest React conference", RequestContext())
"""

__version__ = "0.1.0"
