"""
Content analysis for AI question generation.

Tags source material with a subject, spots material that already contains
questions (so the model reformats instead of inventing), and for code
guesses the language so the prompt can ask for matching fences.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Optional


def _words(*words: str) -> str:
    return "|".join(words)


MATH_INDICATORS = re.compile(
    r"\$[^$]+\$|\\\(.*?\\\)|\\\[.*?\\\]|\\frac\{|\\sqrt\{|\\sum|\\int|\\lim|\\infty"
    r"|\\alpha|\\beta|\\gamma|\\theta|\\pi|\\sigma|\\Delta|" + _words(
        "equation", "formula", "algebra", "calculus", "geometry", "derivative", "integral",
        "matrix", "vector", "polynomial", "logarithm", "exponential", "trigonometry",
        "quadratic", "linear equation", "probability", "statistics", "mean", "median",
        "variance", "standard deviation",
        "ecuación", "fórmula", "álgebra", "cálculo", "geometría", "derivada", "matemáticas",
        "équation", "formule", "algèbre", "calcul", "géométrie", "dérivée", "mathématiques",
        "Gleichung", "Formel", "Geometrie", "Ableitung", "Mathematik",
        "equazione", "matrice", "vettore", "polinomio", "matematica",
        "equação", "matriz", "vetor", "polinômio", "matemática",
        "równanie", "wzór", "macierz", "wektor", "matematyka",
        "数学", "方程式", "代数", "微分", "積分", "幾何", "行列", "方程", "积分", "几何", "矩阵",
    ),
    re.IGNORECASE,
)

PROGRAMMING_INDICATORS = re.compile(
    r"\b(def|function|class|import|from|export|const|let|var|return|if|else|for|while|switch"
    r"|case|try|catch|async|await|yield)\s+\w+|console\.(log|error|warn)|print\(|System\.out"
    r"|public\s+static|private\s+|protected\s+|#include|using\s+namespace|SELECT\s+.*FROM"
    r"|CREATE\s+TABLE|INSERT\s+INTO|UPDATE\s+.*SET|\.map\(|\.filter\(|\.reduce\(|=>|->"
    r"|\$\{.*\}|f\".*\{|`.*\$\{|\b(" + _words(
        "programming", "coding", "code", "algorithm", "software", r"develop(er|ment)?", "API",
        r"debug(ging)?", r"compil(e|er)", "syntax", "loop", "array", "string", "boolean",
        "integer", "float", "database", "frontend", "backend", "framework", "library",
        "programación", "código", "algoritmo", "programmation", "algorithme",
        "Programmierung", "Algorithmus", "programmazione", "programação", "programowanie",
        "algorytm",
    ) + r")\b|プログラミング|コード|アルゴリズム|编程|代码|算法",
    re.IGNORECASE,
)

PHYSICS_INDICATORS = re.compile(_words(
    "velocity", "acceleration", "force", "energy", "momentum", "gravity", "mass", "physics",
    "newton", "joule", "watt", "ampere", "volt", "ohm", "frequency", "wavelength", "photon",
    "quantum", "relativity", "thermodynamics", "entropy", "kinetic", "potential", "electric",
    "magnetic", "electromagnetic", "optics", "nuclear", "particle", "wave", "oscillation",
    "pendulum", "friction", "torque", "angular", "pressure", "density", "buoyancy", "refraction",
    "velocidad", "aceleración", "fuerza", "energía", "física", "gravedad",
    "vitesse", "accélération", "physique", "gravité",
    "Geschwindigkeit", "Beschleunigung", "Kraft", "Energie", "Physik", "Schwerkraft",
    "velocità", "accelerazione", "fisica", "gravità",
    "velocidade", "aceleração", "gravidade",
    "prędkość", "przyspieszenie", "fizyka", "grawitacja",
    "物理", "速度", "加速度", "力", "エネルギー", "重力", "物理学", "能量",
), re.IGNORECASE)

CHEMISTRY_INDICATORS = re.compile(
    _words(
        "molecule", "atom", "chemical", "compound", "chemical reaction", "chemistry",
        "periodic table", "electron shell", "proton", "neutron", "ion", "covalent", "ionic bond",
    ) + r"|mole\b|molarity|pH level|\bacid\b|\bbase\b.*\bacid|" + _words(
        "oxidation", "reduction", "catalyst", "organic chemistry", "inorganic", "polymer",
        "isotope", "valence", "orbital", "electronegativity", "stoichiometry", "titration",
        "precipitate", "enthalpy", "H2O", "NaCl", "CO2", "O2", "chemical formula",
        "chemical equation",
        "molécula", "átomo", "químico", "química", "reacción química", "tabla periódica",
        "molécule", "atome", "chimie", "réaction chimique", "tableau périodique",
        "Molekül", "Chemie", "chemische Reaktion", "Periodensystem",
        "molecola", "chimica", "reazione chimica", "tavola periodica",
        "reação química", "tabela periódica",
        "cząsteczka", "chemia", "reakcja chemiczna", "układ okresowy",
        "分子", "原子", "化学", "化学反応", "周期表", "化学反应", "元素周期表",
    ),
    re.IGNORECASE,
)

BIOLOGY_INDICATORS = re.compile(_words(
    "cell", "DNA", "RNA", "protein", "enzyme", "organism", "species", "evolution", "genetics",
    "chromosome", "gene", "mutation", "mitosis", "meiosis", "photosynthesis", "respiration",
    "metabolism", "bacteria", "virus", "ecosystem", "biodiversity", "anatomy", "physiology",
    "neuron", "synapse", "hormone", "immune", "antibody", "vaccine", "pathogen", "tissue", "organ",
    "célula", "proteína", "enzima", "organismo", "especie", "evolución", "genética", "cromosoma",
    "cellule", "protéine", "organisme", "espèce", "évolution", "génétique",
    "Zelle", "Enzym", "Organismus", "Spezies", "Genetik", "Chromosom",
    "cellula", "specie", "evoluzione", "espécie", "evolução", "cromossomo",
    "komórka", "białko", "enzym", "organizm", "gatunek", "ewolucja", "genetyka",
    "細胞", "タンパク質", "酵素", "生物", "進化", "遺伝", "染色体", "细胞", "蛋白质", "酶",
    "进化", "遗传",
), re.IGNORECASE)

HISTORY_INDICATORS = re.compile(_words(
    "century", "ancient", "medieval", "renaissance", "revolution", "war", "empire", "dynasty",
    "civilization", "king", "queen", "emperor", "president", "treaty", "battle", "independence",
    "colonial", "industrial", r"world\s+war", r"cold\s+war", "democracy", "monarchy", "republic",
    "constitution", "amendment", r"civil\s+rights", "historical",
    "siglo", "antiguo", "renacimiento", "revolución", "guerra", "imperio",
    "siècle", "ancien", "médiéval", "révolution", "guerre",
    "Jahrhundert", "antik", "mittelalterlich", "Krieg", "Reich",
    "secolo", "antico", "medievale", "rinascimento", "rivoluzione", "impero",
    "século", "antigo", "renascimento", "revolução", "império",
    "wiek", "starożytny", "średniowieczny", "renesans", "rewolucja", "wojna", "imperium",
    "世紀", "古代", "中世", "ルネサンス", "革命", "戦争", "帝国", "世纪", "中世纪", "文艺复兴", "战争",
), re.IGNORECASE)

ECONOMICS_INDICATORS = re.compile(_words(
    "economy", "GDP", "inflation", "deflation", "supply", "demand", "market", "trade",
    "investment", "stock", "bond", "currency", "fiscal", "monetary", "budget", "tax", "tariff",
    "subsidy", "unemployment", "recession", "growth", "capitalism", "socialism",
    "microeconomics", "macroeconomics", "equilibrium", "elasticity", "monopoly", "oligopoly",
    "economía", "PIB", "inflación", "mercado", "comercio", "inversión",
    "économie", "marché", "commerce", "investissement",
    "Wirtschaft", "BIP", "Markt", "Handel", "Investition",
    "economia", "mercato", "commercio", "investimento", "comércio",
    "gospodarka", "PKB", "inflacja", "rynek", "inwestycja",
    "経済", "インフレ", "市場", "貿易", "投資", "经济", "通货膨胀", "市场", "贸易",
), re.IGNORECASE)

EXISTING_QUESTIONS_INDICATORS = re.compile(
    r"\bquestion\s*\d*\s*[:.]\s*|\bQ\s*\d+\s*[:.]\s*"
    r"|\b(correct\s*answer|right\s*answer|answer\s*key)\s*[:.]\s*"
    r"|\boption\s*[A-D]\s*[:.]\s*|\bchoice\s*\d\s*[:.]",
    re.IGNORECASE,
)

# First match wins, so more specific languages come first
CODE_LANGUAGE_HINTS: dict[str, re.Pattern] = {
    "typescript": re.compile(
        r"\binterface\s+\w+|\btype\s+\w+\s*=|:\s*(string|number|boolean|any|void)\b|<[A-Z]\w*>"
        r"|\bReadonly<|\bPartial<|\bas\s+\w+|\bnamespace\s+\w+", re.IGNORECASE),
    "python": re.compile(
        r"\bdef\s+\w+\(|\bimport\s+\w+|\bfrom\s+\w+\s+import|\bclass\s+\w+:"
        r"|\bif\s+__name__\s*==|\bself\.\w+|\bprint\s*\(", re.IGNORECASE),
    "javascript": re.compile(
        r"\bconst\s+\w+\s*=|\blet\s+\w+\s*=|\bfunction\s+\w+\s*\(|=>\s*\{"
        r"|\bconsole\.(log|error|warn)|\basync\s+function|\bawait\s+", re.IGNORECASE),
    "java": re.compile(
        r"\bpublic\s+(static\s+)?(void|class|int|String)|\bprivate\s+|\bprotected\s+"
        r"|\bSystem\.out\.print", re.IGNORECASE),
    "sql": re.compile(
        r"\bSELECT\s+.*\bFROM\b|\bCREATE\s+TABLE\b|\bINSERT\s+INTO\b|\bUPDATE\s+.*\bSET\b"
        r"|\bDELETE\s+FROM\b|\bJOIN\b.*\bON\b", re.IGNORECASE),
    "cpp": re.compile(
        r"#include\s*<|\busing\s+namespace\s+std|\bstd::|\bcout\s*<<|\bcin\s*>>|\bint\s+main\s*\(",
        re.IGNORECASE),
    "html": re.compile(
        r"<(!DOCTYPE|html|head|body|div|span|p|a|img|table|form|input|button)\b", re.IGNORECASE),
    "css": re.compile(
        r"\{[^}]*:\s*[^;]+;[^}]*\}|@media\s+|@keyframes\s+|\.[\w-]+\s*\{|#[\w-]+\s*\{",
        re.IGNORECASE),
    "go": re.compile(
        r"\bpackage\s+\w+|\bfunc\s+\w*\(|\bgo\s+func|:=|\bchan\s+|\bdefer\s+"
        r"|\btype\s+\w+\s+struct|\bfmt\.\w+", re.IGNORECASE),
    "rust": re.compile(
        r"\bfn\s+\w+|\blet\s+mut\s+|\bimpl\s+\w+|\bpub\s+fn|\bmatch\s+\w+\s*\{|->\s*\w+"
        r"|\bResult<|\bOption<|\bprintln!\(", re.IGNORECASE),
    "ruby": re.compile(
        r"\bdef\s+\w+|\bdo\s*\||\bputs\s+|\brequire\s+['\"]|\battr_(reader|writer|accessor)"
        r"|\bclass\s+\w+\s*<\s*\w+", re.IGNORECASE),
    "php": re.compile(
        r"<\?php|\$\w+\s*=|\bfunction\s+\w+\s*\(.*\)\s*\{|->\w+\(|::\w+|\becho\s+",
        re.IGNORECASE),
    "csharp": re.compile(
        r"\bnamespace\s+\w+|\busing\s+\w+;|\bpublic\s+class\s+\w+|\bvar\s+\w+\s*="
        r"|\basync\s+Task|\bConsole\.Write", re.IGNORECASE),
    "bash": re.compile(
        r"#!/bin/(bash|sh)|\becho\s+[\"']|\bexport\s+\w+=|\bif\s+\[\s*|\bfi\b|\bdone\b"
        r"|\$\{\w+\}|\bfunction\s+\w+\s*\(\)", re.IGNORECASE),
    "yaml": re.compile(r"^\s*[\w-]+:\s*[^\s{\[]|^\s*-\s+[\w\"']", re.MULTILINE),
    "json": re.compile(r"^\s*\{\s*\"\w+\"\s*:|\[\s*\{|\"\w+\"\s*:\s*[\[{\"\d]", re.MULTILINE),
}

# (subject, pattern, needs_latex, needs_code_blocks)
CONTENT_TYPE_CHECKS = (
    ("mathematics", MATH_INDICATORS, True, False),
    ("physics", PHYSICS_INDICATORS, True, False),
    ("chemistry", CHEMISTRY_INDICATORS, True, False),
    ("programming", PROGRAMMING_INDICATORS, False, True),
    ("biology", BIOLOGY_INDICATORS, False, False),
    ("history", HISTORY_INDICATORS, False, False),
    ("economics", ECONOMICS_INDICATORS, False, False),
)


@dataclass
class ContentAnalysis:
    type: str = "general"
    language: Optional[str] = None
    has_existing_questions: bool = False
    needs_latex: bool = False
    needs_code_blocks: bool = False
    word_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def has_existing_questions(content: str) -> bool:
    return bool(content) and EXISTING_QUESTIONS_INDICATORS.search(content) is not None


def detect_code_language(content: str) -> Optional[str]:
    for language, pattern in CODE_LANGUAGE_HINTS.items():
        if pattern.search(content):
            return language
    return None


def detect_content_type(content: str) -> str:
    return analyze_content(content).type


def analyze_content(content: Optional[str]) -> ContentAnalysis:
    if not content:
        return ContentAnalysis()
    result = ContentAnalysis(
        has_existing_questions=has_existing_questions(content),
        word_count=len(content.split()),
    )
    for subject, pattern, needs_latex, needs_code in CONTENT_TYPE_CHECKS:
        if pattern.search(content):
            result.type = subject
            result.needs_latex = needs_latex
            result.needs_code_blocks = needs_code
            if needs_code:
                result.language = detect_code_language(content)
            break
    return result
