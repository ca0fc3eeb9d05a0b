# Default job-type templates offered when a practice starts with an empty DB.
JOB_TYPES = [
    (
        "1", "Poder Especial", "Otorgamiento de poder especial para actos específicos", 500000,
        [
            (1, "Consulta inicial", "Reunión con cliente", 1),
            (2, "Redacción del poder", "Elaboración del documento", 1),
            (3, "Revisión y firma", "Firma del poderdante", 1),
            (4, "Entrega de testimonios", "Entrega al cliente", 0),
        ],
    ),
    (
        "2", "Escritura de Compraventa de Inmueble", "Transferencia de dominio de bien inmueble", 3000000,
        [
            (1, "Recepción de documentos", "Verificar documentación completa", 2),
            (2, "Estudio de títulos", "Verificar cadena dominial", 5),
            (3, "Condición de dominio", "Solicitar informe en Registro", 10),
            (4, "Redacción de escritura", "Elaborar documento", 3),
            (5, "Firma de partes", "Comparecencia y firma", 2),
            (6, "Inscripción en Registro", "Presentar al Registro Público", 15),
            (7, "Retiro y entrega", "Entregar título inscripto", 3),
        ],
    ),
    (
        "3", "Sucesión Intestada", "Proceso sucesorio sin testamento", 8000000,
        [
            (1, "Consulta y recopilación", "Reunir documentación", 7),
            (2, "Presentación demanda", "Presentar al juzgado", 3),
            (3, "Publicación edictos", "Publicar en diario", 30),
            (4, "Declaratoria de herederos", "Esperar resolución", 60),
            (5, "Inventario y avalúo", "Listar y valorar bienes", 30),
            (6, "Partición", "Dividir bienes", 30),
            (7, "Inscripciones registrales", "Registrar a nombre herederos", 30),
        ],
    ),
]


def seed(conn):
    # only seed templates into an empty catalog
    row = conn.execute("SELECT COUNT(*) AS n FROM job_types").fetchone()
    if row and row["n"] == 0:
        for type_id, name, description, price, steps in JOB_TYPES:
            conn.execute(
                "INSERT INTO job_types(job_type_id, name, description, suggested_price) VALUES (?,?,?,?)",
                (type_id, name, description, price),
            )
            conn.executemany(
                """
                INSERT INTO job_type_steps(job_type_id, number, name, description, estimated_days)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(type_id, n, s_name, s_desc, days) for n, s_name, s_desc, days in steps],
            )
        conn.commit()
