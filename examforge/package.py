"""
SCORM 2004 package writer for ExamForge.

Builds the offline-playable package for a test definition: imsmanifest.xml
(with sequencing objectives derived from the pass rules), metadata.xml (LOM),
the embedded test.json consumed by the engine, and a launch page.
"""

import io
import json
import logging
import os
import re
import zipfile
from datetime import datetime
from typing import Any, Dict, Optional

from examforge.models import PassRule, Section, TestDefinition

logger = logging.getLogger(__name__)

MANIFEST_NAME = "imsmanifest.xml"
METADATA_NAME = "metadata.xml"
TEST_JSON_NAME = "test.json"
LAUNCH_PAGE_NAME = "index.html"

DEFAULT_OVERALL_THRESHOLD = "0.80"
DEFAULT_TOPIC_THRESHOLD = "0.50"

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_MANIFEST_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="{ident}" version="1.0"
  xmlns="http://www.imsglobal.org/xsd/imscp_v1p1"
  xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"
  xmlns:adlseq="http://www.adlnet.org/xsd/adlseq_v1p3"
  xmlns:adlnav="http://www.adlnet.org/xsd/adlnav_v1p3"
  xmlns:imsss="http://www.imsglobal.org/xsd/imsss"
  xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
  xsi:schemaLocation="http://www.imsglobal.org/xsd/imscp_v1p1 imscp_v1p1.xsd
    http://www.adlnet.org/xsd/adlcp_v1p3 adlcp_v1p3.xsd
    http://www.adlnet.org/xsd/adlseq_v1p3 adlseq_v1p3.xsd
    http://www.adlnet.org/xsd/adlnav_v1p3 adlnav_v1p3.xsd
    http://www.imsglobal.org/xsd/imsss imsss_v1p0.xsd">

  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>2004 4th Edition</schemaversion>
    <adlcp:location>{metadata_name}</adlcp:location>
  </metadata>

  <organizations default="org_{ident}">
    <organization identifier="org_{ident}" structure="hierarchical">
      <title>{title}</title>
      <item identifier="item_{ident}" identifierref="res_{ident}">
        <title>{title}</title>
        <imsss:sequencing>
          <imsss:controlMode choice="true" flow="true" />
          <imsss:deliveryControls completionSetByContent="true" objectiveSetByContent="true" />
          <imsss:objectives>
            <imsss:primaryObjective objectiveID="primary_obj" satisfiedByMeasure="true">
              <imsss:minNormalizedMeasure>{overall_threshold}</imsss:minNormalizedMeasure>
            </imsss:primaryObjective>{objectives}
          </imsss:objectives>
        </imsss:sequencing>
        <adlnav:presentation>
          <adlnav:navigationInterface>
            <adlnav:hideLMSUI>continue</adlnav:hideLMSUI>
            <adlnav:hideLMSUI>previous</adlnav:hideLMSUI>
            <adlnav:hideLMSUI>abandon</adlnav:hideLMSUI>
            <adlnav:hideLMSUI>exit</adlnav:hideLMSUI>
          </adlnav:navigationInterface>
        </adlnav:presentation>
      </item>
    </organization>
  </organizations>

  <resources>
    <resource identifier="res_{ident}" type="webcontent" adlcp:scormType="sco" href="{launch}">
      <file href="{launch}"/>
      <file href="{test_json}"/>
    </resource>
  </resources>
</manifest>"""

_OBJECTIVE_TEMPLATE = """
            <imsss:objective objectiveID="obj_topic_{topic_id}">
              <imsss:minNormalizedMeasure>{threshold}</imsss:minNormalizedMeasure>
            </imsss:objective>"""

_METADATA_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<lom xmlns="http://ltsc.ieee.org/xsd/LOM"
     xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
     xsi:schemaLocation="http://ltsc.ieee.org/xsd/LOM lomStrict.xsd">
  <general>
    <identifier>
      <catalog>test</catalog>
      <entry>{test_id}</entry>
    </identifier>
    <title>
      <string language="en">{title}</string>
    </title>
    <description>
      <string language="en">{description}</string>
    </description>
    <language>en</language>
  </general>
  <lifeCycle>
    <version>
      <string language="en">{version}</string>
    </version>
    <status>
      <source>LOMv1.0</source>
      <value>final</value>
    </status>
  </lifeCycle>
  <technical>
    <format>text/html</format>
  </technical>
  <educational>
    <interactivityType>
      <source>LOMv1.0</source>
      <value>active</value>
    </interactivityType>
    <learningResourceType>
      <source>LOMv1.0</source>
      <value>exercise</value>
    </learningResourceType>
  </educational>
</lom>"""

_LAUNCH_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body>
  <main>
    <h1>{title}</h1>
    <p>{description}</p>
    <p>{question_count} questions. Pass mark: {pass_percent}%.</p>
    <p data-test-definition="{test_json}"></p>
  </main>
</body>
</html>"""


def xml_escape(text: Optional[str]) -> str:
    """Escape text for safe inclusion in XML."""
    if text is None:
        return ""
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def sanitize_filename(title: str, default: str = "test") -> str:
    """Sanitize a title for use as a filename (max 80 characters)."""
    clean = re.sub(r"[^\w\s\-]", "", title or "")
    clean = re.sub(r"\s+", "_", clean.strip())
    return clean[:80] or default


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _threshold(value: float) -> str:
    return f"{min(1.0, max(0.0, value)):.2f}"


def overall_threshold(test: TestDefinition) -> str:
    """Primary objective minNormalizedMeasure for the overall pass rule."""
    rule = test.overall_pass_rule
    if rule is None:
        return DEFAULT_OVERALL_THRESHOLD
    if rule.is_percent:
        return _threshold(rule.value / 100)
    total = test.total_questions
    return _threshold(rule.value / total) if total > 0 else DEFAULT_OVERALL_THRESHOLD


def topic_threshold(section: Section) -> str:
    """Per-topic objective threshold; 0.50 when the topic has no rule."""
    rule: Optional[PassRule] = section.pass_rule
    if rule is None:
        return DEFAULT_TOPIC_THRESHOLD
    if rule.is_percent:
        return _threshold(rule.value / 100)
    drawn = section.effective_draw_count
    return _threshold(rule.value / drawn) if drawn > 0 else DEFAULT_TOPIC_THRESHOLD


def build_manifest(test: TestDefinition) -> str:
    ident = f"test_{test.id}"
    objectives = "".join(
        _OBJECTIVE_TEMPLATE.format(topic_id=xml_escape(s.topic_id), threshold=topic_threshold(s))
        for s in test.sections
    )
    return _MANIFEST_TEMPLATE.format(
        ident=xml_escape(ident),
        title=xml_escape(test.title),
        overall_threshold=overall_threshold(test),
        objectives=objectives,
        metadata_name=METADATA_NAME,
        launch=LAUNCH_PAGE_NAME,
        test_json=TEST_JSON_NAME,
    )


def build_metadata_xml(test: TestDefinition, version: str = "1.0") -> str:
    return _METADATA_TEMPLATE.format(
        test_id=xml_escape(test.id),
        title=xml_escape(test.title),
        description=xml_escape(test.description or "Assessment test"),
        version=xml_escape(version),
    )


def build_test_json(test: TestDefinition) -> str:
    """The embedded definition, including derived passPercent and totalQuestions."""
    return json.dumps(test.to_dict(), indent=2, ensure_ascii=False)


def build_launch_page(test: TestDefinition) -> str:
    return _LAUNCH_PAGE_TEMPLATE.format(
        title=xml_escape(test.title),
        description=xml_escape(test.description or ""),
        question_count=test.total_questions,
        pass_percent=test.pass_percent,
        test_json=TEST_JSON_NAME,
    )


def build_package(test: TestDefinition) -> io.BytesIO:
    """Assemble the package zip in memory.

    Returns:
        BytesIO buffer positioned at 0 containing the .zip file.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_NAME, build_manifest(test))
        zf.writestr(METADATA_NAME, build_metadata_xml(test))
        zf.writestr(LAUNCH_PAGE_NAME, build_launch_page(test))
        zf.writestr(TEST_JSON_NAME, build_test_json(test))
    buf.seek(0)
    return buf


def write_package(test: TestDefinition, config: Dict[str, Any], output_path: Optional[str] = None) -> str:
    """Write the package zip to disk.

    Args:
        test: The test definition to package.
        config: Application config; uses paths.output_dir and
            package.filename_template ({title} and {timestamp} placeholders).
        output_path: Explicit destination, overriding the config.

    Returns:
        Path of the written zip file.
    """
    if output_path is None:
        output_dir = config.get("paths", {}).get("output_dir", "output")
        template = config.get("package", {}).get("filename_template", "{title}_scorm.zip")
        filename = template.format(
            title=sanitize_filename(test.title),
            timestamp=datetime.now().strftime("%Y%m%d%H%M%S"),
        )
        output_path = os.path.join(output_dir, filename)

    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    with open(output_path, "wb") as f:
        f.write(build_package(test).getvalue())

    logger.info("Wrote SCORM package for test %s to %s", test.id, output_path)
    return output_path
