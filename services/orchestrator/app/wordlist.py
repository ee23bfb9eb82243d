from __future__ import annotations

import random

# Vocabulary for typo suggestions and random-word picks.
COMMON_WORDS: tuple[str, ...] = tuple(
    """
    aberration abate abhor abstain abstruse acumen adamant admonish aesthetic affable
    alacrity alleviate altruism ambivalent ameliorate amiable anachronism anomaly antipathy
    apathy appease arbitrary arcane ardent arduous articulate ascetic assiduous assuage
    astute audacious austere avarice banal belligerent benevolent bolster bombastic
    brevity cacophony cajole callous candor capricious castigate catalyst caustic censure
    chicanery circumspect coalesce cogent commensurate complacent conciliatory conundrum
    copious corroborate credulous cryptic culpable cynical dearth debacle decorum deference
    deleterious demagogue denigrate deride diatribe didactic diffident digress diligent
    disparage disseminate dogmatic dubious ebullient eclectic efficacy effrontery egregious
    elucidate eloquent emulate enervate enigma ephemeral equanimity equivocal erudite
    esoteric euphemism exacerbate exculpate exemplary exonerate expedient extol facetious
    fallacious fastidious fervent flippant florid forbearance fortuitous frugal futile
    garrulous gregarious guile hackneyed harangue haughty hedonist heresy hubris hyperbole
    iconoclast idiosyncrasy impetuous implacable impudent incessant incorrigible indolent
    ineffable inexorable ingenuous innocuous insipid intrepid inundate irascible itinerant
    jubilant juxtapose laconic languid largesse laudable lethargic loquacious lucid
    magnanimous malevolent malleable maverick mendacious mercurial meticulous mitigate
    mollify morose mundane munificent nefarious negligent nonchalant obdurate obfuscate
    oblivious obsequious obstinate officious onerous opulent ostentatious paradigm paradox
    paragon parsimonious paucity pedantic penchant penurious perfidious perfunctory
    pernicious perspicacious pertinent phlegmatic placate platitude plethora poignant
    pragmatic precocious prescient prevaricate pristine prodigal prodigious profligate
    prolific propensity prosaic proscribe provincial prudent pugnacious quandary querulous
    quixotic rancor recalcitrant recluse redundant refute relegate remiss reprobate
    repudiate rescind resilient reticent reverent sagacious salient sanguine sardonic
    scrupulous serendipity solicitous soporific sporadic spurious squander stoic strident
    sycophant taciturn tenacious tenuous timorous torpid tractable transient trepidation
    truculent ubiquitous unctuous vacillate venerate veracity verbose vex vicarious
    vindicate virulent vituperate volatile voracious wary zealous zenith
    alphabet anatomy biography breakfast calendar candidate companion democracy disaster
    economy emotion etymology galaxy geography grammar hazard history holiday humor
    inflammable language library lunatic malaria mortgage muscle nice nightmare orange
    panic philosophy photograph planet quarantine salary sarcasm school science sincere
    sinister telephone television tragedy umbrella universe vaccine villain whiskey
    """.split()
)


def random_word(rng: random.Random | None = None) -> str:
    return (rng or random).choice(COMMON_WORDS)
