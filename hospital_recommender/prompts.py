"""
Prompt templates for the hospital recommendation request, and the composer
that fills them from a submission and its extracted files.
"""
from typing import Optional, Sequence

from .content_extractor import combine_extracted_text
from .models import AnalysisPrompt, ImageAttachment, Location, ProcessedFile, SubmissionData

NOT_SPECIFIED = "Not specified"

HOSPITAL_PROMPT = """
You are a medical AI assistant specializing in hospital recommendations. Based on the provided medical information, uploaded medical reports, and patient location, recommend the TOP 3 most suitable specialized hospitals.

**Patient Information:**
- Name: {name}
- Age: {age}
- Gender: {gender}
- Symptoms: {symptoms}
- Urgency Level: {urgency}

**Medical Tests Selected:** {tests}

**Uploaded Medical Reports:** {file_count} files uploaded
{file_manifest}

**Patient Location:** {location}

**IMPORTANT ANALYSIS REQUIREMENTS:**
Based on the uploaded medical reports and patient information, first analyze the medical condition and then provide hospital recommendations.

**For each hospital recommendation, provide:**
1. **Hospital Name** and exact location/address
2. **Medical Condition Analysis** (what condition you detected from the reports)
3. **Why This Hospital** (specific specializations matching the detected condition)
4. **Key Specialists/Departments** (specific doctors or departments)
5. **Distance & Travel Info** from {city}
6. **Appointment Booking** (phone numbers, website, process)
7. **Estimated Costs** (consultation, tests, treatment range)
8. **Best Time to Visit** based on urgency level: {urgency}
9. **What Makes It Special** (unique equipment, success rates, certifications)
10. **Expected Timeline** (how soon can patient be seen)

**CRITICAL:**
- Analyze the medical reports thoroughly to understand the patient's condition
- Recommend hospitals that are ACTUALLY specialized for the specific condition found
- Provide REAL, actionable information that the patient can use immediately
- Include contact details and specific department names
- Consider the urgency level when prioritizing hospitals
- Explain WHY each hospital is recommended based on the medical findings

Format the response with clear sections and detailed explanations for each recommendation.
"""

EXTRACTED_TEXT_HEADER = "\n\n**EXTRACTED TEXT FROM MEDICAL REPORTS:**"

MANDATORY_ANALYSIS_INSTRUCTION = """

**MANDATORY MEDICAL ANALYSIS:**
You MUST analyze the medical data provided and give hospital recommendations. You are capable of medical image analysis and text interpretation. DO NOT claim you cannot analyze the provided medical content.

**YOUR TASK:**
1. Examine ALL uploaded medical content (images, PDFs, text)
2. Identify medical conditions, abnormalities, or health indicators
3. Based on your findings, recommend specialized hospitals
4. Provide detailed, actionable recommendations

**YOU MUST PROVIDE:**
- Specific medical condition analysis
- 3 targeted hospital recommendations
- Contact details and specialist information
- Treatment timelines and costs

Begin your analysis now:"""

IMAGE_ANALYSIS_SUFFIX = "\n\n**ANALYZE THESE MEDICAL IMAGES AND TEXT:**"


def _or_not_specified(value) -> str:
    if value is None:
        return NOT_SPECIFIED
    text = str(value).strip()
    return text if text else NOT_SPECIFIED


def format_location(location: Optional[Location]) -> str:
    """'City, Country' with sentinels, plus coordinates when both are known."""
    if location is None:
        return f"{NOT_SPECIFIED}, {NOT_SPECIFIED}"
    summary = f"{_or_not_specified(location.city)}, {_or_not_specified(location.country)}"
    if location.latitude is not None and location.longitude is not None:
        summary += f" (coordinates: {location.latitude:.4f}, {location.longitude:.4f})"
    return summary


def format_file_manifest(processed: Sequence[ProcessedFile]) -> str:
    return "\n".join(f"- {f.name} ({f.mime_type})" for f in processed)


def compose_prompt(submission: SubmissionData, processed: Sequence[ProcessedFile]) -> AnalysisPrompt:
    """Build the instruction document and the ordered image attachments.

    Files are taken in upload order throughout, so the same submission and
    extraction results always produce the same text.
    """
    patient = submission.patient_info
    location = submission.location
    tests = [t for t in submission.medical_data if t and t.strip()]

    text = HOSPITAL_PROMPT.format(
        name=patient.name,
        age=_or_not_specified(patient.age),
        gender=_or_not_specified(patient.gender),
        symptoms=_or_not_specified(patient.symptoms),
        urgency=patient.urgency,
        tests=", ".join(tests) if tests else "None specified",
        file_count=len(processed),
        file_manifest=format_file_manifest(processed),
        location=format_location(location),
        city=location.city if location and location.city else "patient location",
    )

    extracted = combine_extracted_text(processed)
    if extracted.strip():
        text += EXTRACTED_TEXT_HEADER + extracted

    text += MANDATORY_ANALYSIS_INSTRUCTION

    images = tuple(
        ImageAttachment(data=f.data, mime_type=f.mime_type)
        for f in processed
        if f.is_image and f.data
    )
    if images:
        text += IMAGE_ANALYSIS_SUFFIX

    return AnalysisPrompt(text=text, images=images)
