"""issueres: automated issue resolution with human review.

Researches a repository for a tracked issue, drafts a fix plan, generates
file patches with a generative model, stops for human approval and opens a
pull request.
"""

__version__ = "0.1.0"
