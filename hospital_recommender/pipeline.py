"""
Analysis pipeline: extract → compose → invoke → translate.
"""
import logging
from typing import Sequence

from .content_extractor import extract_all, processed_files
from .models import AnalysisResult, SubmissionData, UploadedFile
from .prompts import compose_prompt
from .resilient_invoker import ResilientInvoker
from .translator import to_analysis_error, to_analysis_result

logger = logging.getLogger(__name__)


async def analyze_submission(
    submission: SubmissionData,
    uploads: Sequence[UploadedFile],
    invoker: ResilientInvoker,
) -> AnalysisResult:
    """Run one submission through the pipeline.

    Raises:
        AnalysisError: the caller-facing error for any failed invocation
    """
    outcomes = await extract_all(uploads)
    processed = processed_files(outcomes)

    prompt = compose_prompt(submission, processed)
    logger.info(
        f"Composed prompt ({len(prompt.text)} chars, {len(prompt.images)} image(s), "
        f"urgency={submission.patient_info.urgency})"
    )

    result = await invoker.invoke(prompt)
    if not result.succeeded:
        raise to_analysis_error(result)

    logger.info(f"Analysis complete after {result.call_count} call(s)")
    return to_analysis_result(result, prompt, files_uploaded=len(uploads))
