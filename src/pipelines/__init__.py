"""
Runtime pipeline and FastAPI backend for the edge coach.

Processes live detector frames in two stages:
    Stage 1: Edge Pipeline (angles, technique, biomechanics, kinematics, load)
    Stage 2: Coaching Session Runtime (guard, cue gating, voice cues, buffering)
"""
