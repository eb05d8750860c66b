from __future__ import annotations

from pathlib import Path

APP_TITLE = "Drawbatch"

DEFAULT_OUTPUT_DIR = Path("batch_output")
DEFAULT_HOST_PATH = r"C:\Program Files\Autodesk\AutoCAD 2025\accoreconsole.exe"
DEFAULT_HOST_COMMAND = "ProcessWithJsonBatch"
DEFAULT_FILE_PATTERN = "*.dwg"
DEFAULT_TIMEOUT_SECONDS = 6 * 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.2
DEFAULT_ARTIFACT_GRACE_SECONDS = 2.0
DEFAULT_TERMINATE_WAIT_SECONDS = 10.0

OUTPUT_ARTIFACT_SUFFIX = ".json"
SCRIPT_SUFFIX = ".scr"
BATCH_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
DIFF_REPORT_PREFIX = "diff_report_"
DIFF_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Names of the environment values read by the host-side command.
ENV_INPUT_JSON_PATH = "INPUT_JSON_PATH"
ENV_INPUT_JSON_CONTENT = "INPUT_JSON_CONTENT"
ENV_OUTPUT_FOLDER = "OUTPUT_FOLDER"
ENV_OUTPUT_FILENAME = "OUTPUT_FILENAME"
ENV_TIMESTAMP = "TIMESTAMP"
ENV_DRAWING_NAME = "DRAWING_NAME"

# Engine defaults injected into every materialized configuration.
ENGINE_DEFAULTS: dict[str, object] = {
    "ExtractBlockNames": True,
    "ExtractLayerNames": True,
    "layersToValidate": [],
    "PluginVersion": "1.0",
}

REQUIRED_COLUMNS = ("ProjectType", "PlotUse", "Authority")

FILENAME_COLUMNS = ("Filename", "File", "Drawing")

# CSV column -> canonical property name, for columns whose name differs.
COLUMN_ALIASES: dict[str, str] = {
    # Property name keeps the plugin's spelling.
    "EffectedByRoadWidening": "EffectedbyRoadWidening",
    "DoYouWantToAvailExtraMortgageForNalaConversion": "AvailExtraMortgageForNalaConversion",
    "DoYouWantToAvailExtraMortgageForCityLevelImpactFee": "AvailExtraMortgageForCityLevelImpactFee",
    "DoYouWantToAvailExtraMortgageForCapitalizationCharges": "AvailExtraMortgageForCapitalizationCharges",
}

BOOLEAN_PROPERTIES = (
    "ExtractBlockNames",
    "ExtractLayerNames",
    "AvailTDR",
    "EffectedbyRoadWidening",
    "AvailRoadWideningConcession",
    "EffectedByNalaWidening",
    "AvailNalaWideningConcession",
    "AvailExtraMortgageForNalaConversion",
    "AvailExtraMortgageForCityLevelImpactFee",
    "AvailExtraMortgageForCapitalizationCharges",
)

LIST_PROPERTIES = (
    "RoadWideningConcessionFor",
    "NalaWideningConcessionFor",
    "layersToValidate",
)

NUMERIC_PROPERTIES = ("PlotAreaAsPerDocument",)

STRING_PROPERTIES = (
    "ProjectType",
    "NatureOfDevelopment",
    "PlotUse",
    "PlotSubUse",
    "SpecialBuildingType",
    "Authority",
    "CategoryOfLayoutPermission",
    "PluginVersion",
)

# Host console lines that mean the command never ran.
COMMAND_NOT_FOUND_MARKERS = ("unknown command", "command not found")
PLUGIN_LOAD_KEYWORDS = ("netload", "assembly")
PLUGIN_LOAD_ERROR_MARKERS = (
    "error",
    "failed",
    "cannot",
    "unable",
    "not found",
    "exception",
    "could not",
)

# Keys in an output artifact that carry validation failures.
VALIDATION_FAILURE_KEYS = ("Failures", "FailedValidations", "ValidationErrors", "Errors")
