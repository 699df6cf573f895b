"""
Human-readable hostname generation.

Names are an adjective followed by the surname of a notable scientist or
hacker, e.g. ``focused_turing``. Underscores are not valid in hostnames so
the returned label uses a hyphen instead.
"""

import random
from typing import Optional

ADJECTIVES = [
    "admiring", "adoring", "affectionate", "agitated", "amazing", "angry",
    "awesome", "beautiful", "blissful", "bold", "brave", "busy", "charming",
    "clever", "compassionate", "competent", "condescending", "confident",
    "cool", "cranky", "crazy", "dazzling", "determined", "distracted",
    "dreamy", "eager", "ecstatic", "elastic", "elated", "elegant", "eloquent",
    "epic", "exciting", "fervent", "festive", "flamboyant", "focused",
    "friendly", "frosty", "funny", "gallant", "gifted", "goofy", "gracious",
    "great", "happy", "hardcore", "heuristic", "hopeful", "hungry",
    "infallible", "inspiring", "intelligent", "interesting", "jolly",
    "jovial", "keen", "kind", "laughing", "loving", "lucid", "magical",
    "modest", "musing", "mystifying", "naughty", "nervous", "nice",
    "nifty", "nostalgic", "objective", "optimistic", "peaceful", "pedantic",
    "pensive", "practical", "priceless", "quirky", "quizzical", "recursing",
    "relaxed", "reverent", "romantic", "sad", "serene", "sharp", "silly",
    "sleepy", "stoic", "strange", "stupefied", "suspicious", "sweet",
    "tender", "thirsty", "trusting", "unruffled", "upbeat", "vibrant",
    "vigilant", "vigorous", "wizardly", "wonderful", "xenodochial",
    "youthful", "zealous", "zen",
]

SURNAMES = [
    "agnesi", "albattani", "allen", "almeida", "archimedes", "ardinghelli",
    "babbage", "banach", "bardeen", "bartik", "bassi", "bell", "benz",
    "bhabha", "blackwell", "bohr", "booth", "borg", "bose", "boyd",
    "brahmagupta", "brattain", "brown", "carson", "chandrasekhar",
    "clarke", "colden", "cori", "cray", "curie", "darwin", "davinci",
    "diffie", "dijkstra", "dubinsky", "easley", "edison", "einstein",
    "elgamal", "elion", "engelbart", "euclid", "euler", "faraday", "fermat",
    "fermi", "feynman", "franklin", "galileo", "gates", "goldberg",
    "goldstine", "goodall", "hamilton", "haslett", "hawking", "heisenberg",
    "hermann", "hodgkin", "hoover", "hopper", "hugle", "hypatia", "jackson",
    "jang", "jennings", "jepsen", "johnson", "joliot", "jones", "kalam",
    "kare", "keller", "kepler", "khorana", "kilby", "kirch", "knuth",
    "kowalevski", "lalande", "lamarr", "lamport", "leakey", "leavitt",
    "lederberg", "lehmann", "lewin", "lichterman", "liskov", "lovelace",
    "lumiere", "mahavira", "margulis", "matsumoto", "maxwell", "mayer",
    "mccarthy", "mcclintock", "meitner", "mendel", "merkle", "minsky",
    "mirzakhani", "montalcini", "moore", "morse", "napier", "nash",
    "neumann", "newton", "nightingale", "nobel", "noether", "northcutt",
    "noyce", "panini", "pare", "pascal", "pasteur", "payne", "perlman",
    "pike", "poincare", "poitras", "ptolemy", "raman", "ramanujan", "ride",
    "ritchie", "robinson", "roentgen", "rosalind", "rubin", "saha",
    "sammet", "shannon", "shaw", "shirley", "shockley", "sinoussi",
    "snyder", "spence", "stallman", "stonebraker", "swartz", "swirles",
    "taussig", "tesla", "thompson", "torvalds", "turing", "varahamihira",
    "vaughan", "villani", "visvesvaraya", "volhard", "wescoff", "wiles",
    "williams", "wilson", "wing", "wozniak", "wright", "wu", "yalow",
    "yonath", "zhukovsky",
]


def get_random_name(rng: Optional[random.Random] = None) -> str:
    """Return an ``adjective_surname`` pair."""
    rng = rng or random.SystemRandom()
    return f"{rng.choice(ADJECTIVES)}_{rng.choice(SURNAMES)}"


def generate_hostname(rng: Optional[random.Random] = None) -> str:
    """Return a random two-word hostname label such as ``focused-turing``."""
    return get_random_name(rng).replace("_", "-")
